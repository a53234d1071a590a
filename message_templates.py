"""User- and operator-facing message texts (Markdown)."""

import re

# Characters with meaning in legacy Markdown (parse_mode="Markdown")
_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")


class Messages:
    """Message templates. Values in braces are filled with str.format."""

    # === General ===

    WELCOME = (
        "👋 Привет! Это бот для управления VPN-подпиской.\n\n"
        "Нажмите «Зарегистрироваться», чтобы получить доступ."
    )
    WELCOME_REGISTERED = (
        "👋 С возвращением, *{username}*!\n\n"
        "Выберите действие в меню ниже."
    )
    ERROR_GENERIC = "❌ Произошла ошибка. Попробуйте позже или обратитесь к администратору."
    ERROR_PANEL_UNAVAILABLE = "⚠️ VPN-панель временно недоступна. Попробуйте позже."
    NOT_FOUND = "❓ Аккаунт не найден. Нажмите /start, чтобы зарегистрироваться."
    ADMIN_ONLY = "⛔ Команда доступна только администраторам."

    # === Registration ===

    ASK_USERNAME = (
        "✏️ Введите имя пользователя для VPN-аккаунта.\n\n"
        "От 3 до 32 символов, без пробелов."
    )
    ASK_DURATION = "📅 Имя *{username}* свободно. Выберите срок подписки:"
    ALREADY_REGISTERED = "ℹ️ У вас уже есть аккаунт. Используйте меню для продления."
    REQUEST_ALREADY_PENDING = "⏳ Ваша заявка уже на рассмотрении. Дождитесь ответа администратора."
    INVALID_STATE = "⚠️ Это действие сейчас недоступно. Начните заново с /start."
    INVALID_USERNAME = "⚠️ {reason}\n\nВведите другое имя:"
    INVALID_DURATION = "⚠️ Такой срок недоступен. Выберите вариант из списка."
    USERNAME_LENGTH = "Имя должно содержать от {min_len} до {max_len} символов."
    USERNAME_CHARS = "Имя не может содержать пробелы и «::»."
    USERNAME_TAKEN = "Имя *{username}* уже занято."

    REQUEST_SENT = (
        "📨 Заявка отправлена администратору.\n\n"
        "Срок: *{days} дн.*{payment}\n\n"
        "Мы сообщим, как только заявка будет рассмотрена."
    )
    PAYMENT_DETAILS = "\nСтоимость: *{price} ₽*\nОплата: {bank} {phone}"
    TRIAL_PROCESSING = "⚙️ Создаём пробный доступ, это займёт несколько секунд..."
    AUTO_APPROVE_FAILED_USER = (
        "⚠️ Не удалось выдать пробный доступ автоматически.\n"
        "Заявка передана администратору, ожидайте."
    )

    REGISTRATION_APPROVED = (
        "✅ Регистрация одобрена!\n\n"
        "👤 Аккаунт: *{username}*\n"
        "📅 Действует до: {expiry}\n\n"
        "🔗 Ссылка подписки:\n`{link}`\n\n"
        "Добавьте ссылку в VPN-клиент или отсканируйте QR-код.{instructions}"
    )
    REGISTRATION_REJECTED = "❌ Ваша заявка на регистрацию отклонена."
    INSTRUCTIONS_LINK = "\n\n📖 Инструкция: {url}"
    QR_CAPTION = "📷 QR-код подписки"

    # === Extension ===

    EXTENSION_ASK_DURATION = (
        "⏳ Продление подписки *{username}*\n"
        "Текущий срок: {expiry}\n\n"
        "Выберите срок продления:"
    )
    EXTENSION_UNLIMITED = "♾️ Ваша подписка бессрочная, продление не требуется."
    EXTENSION_APPROVED = (
        "✅ Подписка продлена на {days} дн.\n\n"
        "📅 Действует до: {expiry}"
    )
    EXTENSION_REJECTED = "❌ Ваша заявка на продление отклонена."

    # === Status ===

    STATUS = (
        "👤 Аккаунт: *{username}*\n"
        "{status_icon} Подписка: {status_text}\n"
        "📅 Действует до: {expiry}\n"
        "📊 Трафик: {traffic}\n"
        "📱 Устройств: до {devices}\n"
        "🌐 Серверов: {copies}"
    )
    STATUS_DISABLED = "\n\n⏸ Аккаунт отключён администратором."
    EXPIRY_UNLIMITED = "бессрочно"
    LINK = "🔗 Ваша ссылка подписки:\n`{link}`"

    # === Rename ===

    ASK_NEW_USERNAME = "✏️ Введите новое имя пользователя (сейчас *{username}*):"
    RENAME_DONE = "✅ Имя изменено на *{username}*."
    RENAME_PARTIAL = "⚠️ Имя изменено на {ok} из {total} серверов. Администратор уведомлён."

    # === Reminders ===

    RENEWAL_REMINDER = (
        "⏰ Подписка *{username}* истекает через {days_left} {days_word}.\n\n"
        "📅 Действует до: {expiry}\n"
        "Продлите заранее, чтобы не потерять доступ."
    )
    SUBSCRIPTION_EXPIRED = (
        "⛔ Подписка *{username}* истекла {expiry}.\n\n"
        "Нажмите кнопку ниже, чтобы продлить."
    )

    # === Operators ===

    ADMIN_NEW_REGISTRATION = (
        "🆕 Заявка на регистрацию\n\n"
        "👤 {display_name} ({tg_username}, ID `{user_id}`)\n"
        "📛 Имя: *{username}*\n"
        "📅 Срок: {days} дн."
    )
    ADMIN_NEW_EXTENSION = (
        "⏳ Заявка на продление\n\n"
        "👤 {tg_username} (ID `{user_id}`)\n"
        "📛 Аккаунт: *{username}*\n"
        "📅 Текущий срок: {expiry}\n"
        "➕ Продление: {days} дн."
    )
    ADMIN_REGISTRATION_APPROVED = "✅ Регистрация *{username}* одобрена, действует до {expiry}."
    ADMIN_REGISTRATION_REJECTED = "❌ Регистрация *{username}* отклонена."
    ADMIN_EXTENSION_APPROVED = "✅ Подписка *{username}* продлена до {expiry}."
    ADMIN_EXTENSION_REJECTED = "❌ Продление *{username}* отклонено."
    ADMIN_AUTO_APPROVED = "🤖 Пробный доступ *{username}* ({days} дн.) выдан автоматически."
    ADMIN_AUTO_APPROVE_FAILED = (
        "⚠️ Автоодобрение пробного доступа *{username}* не удалось:\n`{error}`\n\n"
        "Заявка ожидает решения."
    )
    ADMIN_ACTION_FAILED = "❌ Ошибка: `{error}`\n\nЗаявка осталась в ожидании, можно повторить."
    ADMIN_REQUEST_NOT_FOUND = "❓ Заявка не найдена или уже обработана."
    ADMIN_RENAME_PARTIAL = "⚠️ Переименование tgId `{user_id}` в *{username}*: ошибки на инбаундах {failed}."

    ADMIN_SYNC_STARTED = "🔄 Синхронизация запущена..."
    ADMIN_SYNC_RESULT = (
        "🔄 Синхронизация завершена\n\n"
        "🌐 Инбаундов: {inbounds}\n"
        "👥 Пользователей: {users}\n"
        "➕ Создано: {created}\n"
        "❌ Ошибок: {failed}"
    )
    ADMIN_NO_CLIENTS = "ℹ️ На панели нет аккаунтов."
    ADMIN_CLIENTS_HEADER = "👥 Аккаунты ({count}):"
    ADMIN_CLIENT_CARD = (
        "👤 *{username}* (tgId `{user_id}`)\n"
        "{status_icon} {status_text}\n"
        "📅 До: {expiry}\n"
        "📊 Трафик: {traffic}\n"
        "🌐 Копий: {copies}\n"
        "{enabled}"
    )
    ADMIN_CLIENT_EXPIRED_LINK = "⚠️ Кнопка устарела, откройте /clients заново."
    ADMIN_CONFIRM_DELETE = "⚠️ Удалить *{username}* со всех инбаундов?"
    ADMIN_TOGGLED = "{state} *{username}* на {ok} из {total} инбаундов."
    ADMIN_DELETED = "🗑 *{username}* удалён с {ok} из {total} инбаундов."
    ADMIN_NO_PENDING = "✅ Нет заявок в ожидании."
    ADMIN_PENDING_HEADER = "📋 Заявки в ожидании: {count}"

    # === Forecast ===

    FORECAST = (
        "📊 Прогноз трафика на текущий месяц ({target})\n\n"
        "📈 Текущий расход: {consumed}\n"
        "🔮 Прогноз до конца месяца: {predicted}\n"
        "📉 Средний расход в день: {per_day}\n\n"
        "⏱ Дней прошло: {days_elapsed} / {days_in_month}\n"
        "⏳ Дней осталось: {days_remaining}\n"
        "🕐 Обновлено: {updated}"
    )
    FORECAST_NO_DATA = "ℹ️ Недостаточно данных для прогноза ({target}). Нужно минимум два замера за месяц."
    FORECAST_TARGET_TOTAL = "все инбаунды"
    FORECAST_TARGET_INBOUND = "инбаунд #{inbound_id}"
    ALERT_PERCENT_INBOUND = "⚠️ Инбаунд #{inbound_id}: прогноз трафика достиг {percent}% от порога ({threshold} GB)\n\n{forecast}"
    ALERT_THRESHOLD_INBOUND = "⚠️ Инбаунд #{inbound_id}: прогноз трафика превысил порог {threshold} GB\n\n{forecast}"
    ALERT_PERCENT_TOTAL = "⚠️ ОБЩИЙ ТРАФИК: прогноз достиг {percent}% от порога ({threshold} GB)\n\n{forecast}"
    ALERT_THRESHOLD_TOTAL = "⚠️ ОБЩИЙ ТРАФИК: прогноз превысил порог {threshold} GB\n\n{forecast}"


def pluralize_days(n: int) -> str:
    """Return Russian plural form for 'день/дня/дней'."""
    n = abs(n)
    if 11 <= n % 100 <= 19:
        return "дней"
    mod10 = n % 10
    if mod10 == 1:
        return "день"
    if 2 <= mod10 <= 4:
        return "дня"
    return "дней"


def escape_md(text) -> str:
    """Escape user-supplied text for legacy Markdown messages."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", str(text))
