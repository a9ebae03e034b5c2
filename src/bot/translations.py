"""
Overlay Plans — Bot translations.

User-facing strings for the chat adapter in English, French and Russian.
Placeholders are positional: {0}, {1}, ...
"""

from __future__ import annotations

SUPPORTED_LANGUAGES = ("en", "fr", "ru")

LANGUAGE_NAMES = {
    "en": "🇬🇧 English",
    "fr": "🇫🇷 Français",
    "ru": "🇷🇺 Русский",
}

TRANSLATIONS: dict[str, dict[str, str]] = {
    "en": {
        "welcome": (
            "Welcome to Overlay Plans! This bot helps you manage your plans and schedules. "
            "Please select your preferred language:"
        ),
        "language_set": "Language set to English. Now let's get started!",
        "select_project": "Please select a project first to process your availability.",
        "your_projects": "Your projects:",
        "project_not_found": "Project not found. Please select another project.",
        "no_project_selected": "No project is currently selected. Please choose a project first.",
        "processing": "Processing...",
        "no_slots_identified": (
            "I couldn't identify any specific time slots in your message. Please try to be more "
            "specific, for example: 'I'm available from 1 to 9 May' or 'I'm busy next Monday'."
        ),
        "no_slots_to_approve": "No time slots found to approve.",
        "error_processing_message": "Sorry, I encountered an error processing your message. Please try again.",
        "error_processing_voice": (
            "Sorry, I encountered an error processing your voice message. "
            "Please try again or send a text message."
        ),
        "error_adding_slots": "Sorry, I encountered an error adding time slots to your schedule. Please try again.",
        "cannot_transcribe": (
            "Sorry, I could not transcribe your voice message. Please try again or send a text message."
        ),
        "transcription_heard": 'I heard: "{0}"',
        "found_available": (
            "I found the following available time slots in your message:\n\n{0}\n\n"
            "Would you like to add these to your schedule?"
        ),
        "found_busy": (
            "I found times when you are busy:\n\n{0}\n\n"
            "Would you like me to register these as times when you're NOT available?"
        ),
        "found_both": (
            "I found both available and busy time slots in your message:\n\n{0}\n\n"
            "Would you like to add these to your schedule?"
        ),
        "approve_all": "Approve All",
        "approve_and_lock": "Approve & Lock",
        "reject_all": "Reject All",
        "slots_added": "✅ Added {0} time slot(s) to your schedule.",
        "slots_added_locked": "🔒 Added {0} time slot(s) to your schedule and locked them.",
        "slots_added_for_user": "✅ Added {0} time slot(s) to {1}'s schedule.",
        "slots_rejected": "Time slots rejected. No changes were made to your schedule.",
        "status_changed": "🔄 Updated {0} time slot(s):\n\n{1}",
        "slots_deleted": "🗑 Deleted {0} time slot(s).",
        "slots_merged": "🔗 Merged into one time slot:\n\n{0}",
        "creating_for": "Creating time slots for",
        "cannot_edit_locked": "You cannot edit this time slot as it is locked by its creator.",
        "user_search_help": 'Please provide a name after the command, like "/for John".',
        "no_users_found": "No users found matching: {0}",
        "users_found": "Found {0} user(s) matching: {1}",
        "create_slots_for": "Create Time Slots for {0}",
        "create_slots_instructions": (
            "Now you can create time slots for {0}. "
            "Simply type or send a voice message with availability information."
        ),
        "back_to_self": "You are now creating time slots for yourself again.",
        "project": "Project",
        "description": "Description",
        "existing_slots": "Existing time slots",
        "no_slots": "No time slots scheduled yet.",
        "send_availability": (
            "You can send text or voice messages about your availability. "
            "I'll process them to update your schedule."
        ),
        "open_mini_app": "Open Mini App",
        "available": "available",
        "busy": "busy",
        "locked": "locked",
        "help": (
            "Available commands:\n"
            "/start — register and pick a language\n"
            "/projects — list and select your projects\n"
            "/slots — show your time slots in the current project\n"
            "/for <name> — schedule on behalf of another project member (/for me to stop)\n"
            "/lang — change language\n"
            "/help — show this message\n\n"
            "Send a text or voice message describing when you are available or busy."
        ),
    },
    "fr": {
        "welcome": (
            "Bienvenue sur Overlay Plans ! Ce bot vous aide à gérer vos plans et horaires. "
            "Veuillez sélectionner votre langue préférée :"
        ),
        "language_set": "Langue définie sur Français. Commençons !",
        "select_project": "Veuillez d'abord sélectionner un projet pour traiter votre disponibilité.",
        "your_projects": "Vos projets :",
        "project_not_found": "Projet introuvable. Veuillez sélectionner un autre projet.",
        "no_project_selected": (
            "Aucun projet n'est actuellement sélectionné. Veuillez d'abord choisir un projet."
        ),
        "processing": "Traitement en cours...",
        "no_slots_identified": (
            "Je n'ai pas pu identifier de créneaux dans votre message. Essayez d'être plus précis, "
            "par exemple : 'Je suis disponible du 1 au 9 mai' ou 'Je suis occupé lundi prochain'."
        ),
        "no_slots_to_approve": "Aucun créneau horaire trouvé à approuver.",
        "error_processing_message": (
            "Désolé, j'ai rencontré une erreur lors du traitement de votre message. Veuillez réessayer."
        ),
        "error_processing_voice": (
            "Désolé, j'ai rencontré une erreur lors du traitement de votre message vocal. "
            "Veuillez réessayer ou envoyer un message texte."
        ),
        "error_adding_slots": (
            "Désolé, j'ai rencontré une erreur en ajoutant des créneaux horaires à votre emploi "
            "du temps. Veuillez réessayer."
        ),
        "cannot_transcribe": (
            "Désolé, je n'ai pas pu transcrire votre message vocal. "
            "Veuillez réessayer ou envoyer un message texte."
        ),
        "transcription_heard": "J'ai entendu : \"{0}\"",
        "found_available": (
            "J'ai trouvé les créneaux de disponibilité suivants dans votre message :\n\n{0}\n\n"
            "Voulez-vous les ajouter à votre emploi du temps ?"
        ),
        "found_busy": (
            "J'ai trouvé des moments où vous êtes occupé :\n\n{0}\n\n"
            "Voulez-vous que je les enregistre comme périodes où vous n'êtes PAS disponible ?"
        ),
        "found_both": (
            "J'ai trouvé à la fois des créneaux disponibles et occupés dans votre message :\n\n{0}\n\n"
            "Voulez-vous les ajouter à votre emploi du temps ?"
        ),
        "approve_all": "Tout Approuver",
        "approve_and_lock": "Approuver & Verrouiller",
        "reject_all": "Tout Rejeter",
        "slots_added": "✅ Ajout de {0} créneau(x) horaire(s) à votre emploi du temps.",
        "slots_added_locked": "🔒 Ajout de {0} créneau(x) horaire(s) à votre emploi du temps et verrouillés.",
        "slots_added_for_user": "✅ Ajout de {0} créneau(x) horaire(s) à l'emploi du temps de {1}.",
        "slots_rejected": (
            "Créneaux horaires rejetés. Aucune modification n'a été apportée à votre emploi du temps."
        ),
        "status_changed": "🔄 {0} créneau(x) mis à jour :\n\n{1}",
        "slots_deleted": "🗑 {0} créneau(x) supprimé(s).",
        "slots_merged": "🔗 Créneaux fusionnés en un seul :\n\n{0}",
        "creating_for": "Création de créneaux horaires pour",
        "cannot_edit_locked": (
            "Vous ne pouvez pas modifier ce créneau horaire car il est verrouillé par son créateur."
        ),
        "user_search_help": 'Veuillez indiquer un nom après la commande, comme "/for John".',
        "no_users_found": "Aucun utilisateur trouvé correspondant à : {0}",
        "users_found": "Trouvé {0} utilisateur(s) correspondant à : {1}",
        "create_slots_for": "Créer des créneaux horaires pour {0}",
        "create_slots_instructions": (
            "Vous pouvez maintenant créer des créneaux horaires pour {0}. Tapez simplement ou "
            "envoyez un message vocal avec les informations de disponibilité."
        ),
        "back_to_self": "Vous créez de nouveau des créneaux pour vous-même.",
        "project": "Projet",
        "description": "Description",
        "existing_slots": "Créneaux horaires existants",
        "no_slots": "Aucun créneau horaire programmé pour le moment.",
        "send_availability": (
            "Vous pouvez envoyer des messages texte ou vocaux concernant votre disponibilité. "
            "Je les traiterai pour mettre à jour votre emploi du temps."
        ),
        "open_mini_app": "Ouvrir Mini App",
        "available": "disponible",
        "busy": "occupé",
        "locked": "verrouillé",
        "help": (
            "Commandes disponibles :\n"
            "/start — s'inscrire et choisir une langue\n"
            "/projects — lister et sélectionner vos projets\n"
            "/slots — afficher vos créneaux dans le projet actuel\n"
            "/for <nom> — planifier pour un autre membre du projet (/for me pour arrêter)\n"
            "/lang — changer de langue\n"
            "/help — afficher ce message\n\n"
            "Envoyez un message texte ou vocal indiquant quand vous êtes disponible ou occupé."
        ),
    },
    "ru": {
        "welcome": (
            "Добро пожаловать в Overlay Plans! Этот бот поможет вам управлять вашими планами и "
            "расписаниями. Пожалуйста, выберите предпочитаемый язык:"
        ),
        "language_set": "Язык установлен на Русский. Давайте начнем!",
        "select_project": "Пожалуйста, сначала выберите проект для обработки вашей доступности.",
        "your_projects": "Ваши проекты:",
        "project_not_found": "Проект не найден. Пожалуйста, выберите другой проект.",
        "no_project_selected": "В настоящее время проект не выбран. Пожалуйста, сначала выберите проект.",
        "processing": "Обработка...",
        "no_slots_identified": (
            "Я не смог определить конкретные временные интервалы в вашем сообщении. Пожалуйста, "
            "попробуйте быть более конкретным, например: 'Я свободен с 1 по 9 мая' или "
            "'Я занят в следующий понедельник'."
        ),
        "no_slots_to_approve": "Не найдено временных интервалов для утверждения.",
        "error_processing_message": (
            "Извините, произошла ошибка при обработке вашего сообщения. Пожалуйста, попробуйте еще раз."
        ),
        "error_processing_voice": (
            "Извините, произошла ошибка при обработке вашего голосового сообщения. "
            "Пожалуйста, попробуйте еще раз или отправьте текстовое сообщение."
        ),
        "error_adding_slots": (
            "Извините, произошла ошибка при добавлении временных интервалов в ваше расписание. "
            "Пожалуйста, попробуйте еще раз."
        ),
        "cannot_transcribe": (
            "Извините, я не смог расшифровать ваше голосовое сообщение. "
            "Пожалуйста, попробуйте еще раз или отправьте текстовое сообщение."
        ),
        "transcription_heard": 'Я услышал: "{0}"',
        "found_available": (
            "Я нашел следующие доступные временные интервалы в вашем сообщении:\n\n{0}\n\n"
            "Хотите добавить их в ваше расписание?"
        ),
        "found_busy": (
            "Я нашел время, когда вы заняты:\n\n{0}\n\n"
            "Хотите, чтобы я зарегистрировал эти периоды как время, когда вы НЕ доступны?"
        ),
        "found_both": (
            "Я нашел как доступные, так и занятые временные интервалы в вашем сообщении:\n\n{0}\n\n"
            "Хотите добавить их в ваше расписание?"
        ),
        "approve_all": "Подтвердить Все",
        "approve_and_lock": "Подтвердить и Заблокировать",
        "reject_all": "Отклонить Все",
        "slots_added": "✅ Добавлено {0} временных интервалов в ваше расписание.",
        "slots_added_locked": "🔒 Добавлено {0} временных интервалов в ваше расписание и заблокировано.",
        "slots_added_for_user": "✅ Добавлено {0} временных интервалов в расписание пользователя {1}.",
        "slots_rejected": "Временные интервалы отклонены. Никаких изменений в вашем расписании не сделано.",
        "status_changed": "🔄 Обновлено {0} временных интервалов:\n\n{1}",
        "slots_deleted": "🗑 Удалено временных интервалов: {0}.",
        "slots_merged": "🔗 Интервалы объединены в один:\n\n{0}",
        "creating_for": "Создание временных интервалов для",
        "cannot_edit_locked": (
            "Вы не можете редактировать этот временной интервал, так как он заблокирован его создателем."
        ),
        "user_search_help": 'Пожалуйста, укажите имя после команды, например "/for Иван".',
        "no_users_found": "Не найдено пользователей, соответствующих запросу: {0}",
        "users_found": "Найдено {0} пользователя(ей), соответствующих запросу: {1}",
        "create_slots_for": "Создать Временные Интервалы для {0}",
        "create_slots_instructions": (
            "Теперь вы можете создать временные интервалы для {0}. Просто напишите или отправьте "
            "голосовое сообщение с информацией о доступности."
        ),
        "back_to_self": "Теперь вы снова создаете временные интервалы для себя.",
        "project": "Проект",
        "description": "Описание",
        "existing_slots": "Существующие временные интервалы",
        "no_slots": "Пока нет запланированных временных интервалов.",
        "send_availability": (
            "Вы можете отправлять текстовые или голосовые сообщения о своей доступности. "
            "Я обработаю их для обновления вашего расписания."
        ),
        "open_mini_app": "Открыть Мини-приложение",
        "available": "свободен",
        "busy": "занят",
        "locked": "заблокировано",
        "help": (
            "Доступные команды:\n"
            "/start — регистрация и выбор языка\n"
            "/projects — список и выбор проектов\n"
            "/slots — ваши временные интервалы в текущем проекте\n"
            "/for <имя> — планировать за другого участника проекта (/for me чтобы вернуться)\n"
            "/lang — сменить язык\n"
            "/help — показать это сообщение\n\n"
            "Отправьте текстовое или голосовое сообщение о том, когда вы свободны или заняты."
        ),
    },
}


def translate(language: str | None, key: str, *args: object) -> str:
    """Look up `key` in `language`, falling back to English."""
    lang = language if language in TRANSLATIONS else "en"
    message = TRANSLATIONS[lang].get(key) or TRANSLATIONS["en"][key]
    for index, arg in enumerate(args):
        message = message.replace(f"{{{index}}}", str(arg))
    return message
