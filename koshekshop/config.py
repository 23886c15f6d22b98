import os
from dotenv import load_dotenv

# Загрузка переменных окружения
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes")


# Production режим
IS_PRODUCTION = _env_bool("PRODUCTION")

# Порты HTTP-сервисов (uvicorn)
PORT = int(os.getenv("PORT", "4000"))
ADMIN_PORT = int(os.getenv("ADMIN_PORT", "4001"))

# Логирование
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_TO_FILE = _env_bool("LOG_TO_FILE")
LOG_FILE = os.getenv("LOG_FILE", "/tmp/koshekshop.log")

# ===== Telegram =====
TG_BOT_TOKEN = os.getenv("TG_BOT_TOKEN", "")
TG_BOT_USERNAME = os.getenv("TG_BOT_USERNAME", "")
TG_MANAGER_CHAT_ID = os.getenv("TG_MANAGER_CHAT_ID", "")
TG_WEBAPP_URL = os.getenv("TG_WEBAPP_URL", "").rstrip("/")
DEFAULT_WEBAPP_URL = "https://sam-polo.github.io/shop-koshekjewerly"
SUPPORT_USERNAME = os.getenv("SUPPORT_USERNAME", "semyonp88")

# ID администраторов бота (для рассылки)
ADMIN_IDS = list(map(int, os.getenv("ADMIN_IDS", "").split(","))) if os.getenv("ADMIN_IDS") else []

# База подписчиков бота
_BASE_DIR = os.path.dirname(os.path.abspath(__file__))
BOT_DB_PATH = os.getenv("BOT_DB_PATH", os.path.join(_BASE_DIR, "bot_users.db"))

# ===== Google Sheets =====
GOOGLE_SA_FILE = os.getenv("GOOGLE_SA_FILE", "")
GOOGLE_SA_JSON = os.getenv("GOOGLE_SA_JSON", "")
# таблица, из которой витрина импортирует товары
IMPORT_SHEET_ID = os.getenv("IMPORT_SHEET_ID", "")
# таблица, которой управляет админка (обычно та же самая)
GOOGLE_SHEET_ID = os.getenv("GOOGLE_SHEET_ID", "")
SHEET_NAMES = [
    name.strip()
    for name in os.getenv("SHEET_NAMES", "Ягоды,Шея,Руки,Уши,Сертификаты").split(",")
    if name.strip()
]

# Периодический импорт (минуты, 0 - выключен)
IMPORT_INTERVAL_MINUTES = int(os.getenv("IMPORT_INTERVAL_MINUTES", "10"))
IMPORT_TIMEOUT = 30
CATEGORIES_CACHE_TTL = int(os.getenv("CATEGORIES_CACHE_TTL", "300"))

# Ключ для ручного импорта (общий для витрины и админки)
ADMIN_IMPORT_KEY = os.getenv("ADMIN_IMPORT_KEY", "")
BACKEND_URL = os.getenv("BACKEND_URL", "https://shop-koshekjewerly.onrender.com").rstrip("/")

# ===== Робокасса =====
ROBOKASSA_MERCHANT_LOGIN = os.getenv("ROBOKASSA_MERCHANT_LOGIN", "")
ROBOKASSA_PASSWORD_1 = os.getenv("ROBOKASSA_PASSWORD_1", "")  # для создания платежа
ROBOKASSA_PASSWORD_2 = os.getenv("ROBOKASSA_PASSWORD_2", "")  # для проверки callback
ROBOKASSA_TEST = _env_bool("ROBOKASSA_TEST")

# ===== Rate limiting (окно 15 минут) =====
RATE_LIMIT_WINDOW = 15 * 60
GENERAL_RATE_LIMIT = int(os.getenv("GENERAL_RATE_LIMIT", "100"))
ORDER_RATE_LIMIT = int(os.getenv("ORDER_RATE_LIMIT", "10"))

# ===== Админка =====
JWT_SECRET = os.getenv("JWT_SECRET", "")
JWT_EXPIRES_MINUTES = 30
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")
ADMIN_FRONTEND_URL = os.getenv("ADMIN_FRONTEND_URL", "http://localhost:5174")

# Uploadcare
UPLOADCARE_PUBLIC_KEY = os.getenv("UPLOADCARE_PUBLIC_KEY", "")
UPLOADCARE_SECRET_KEY = os.getenv("UPLOADCARE_SECRET_KEY", "")
UPLOAD_MAX_BYTES = 10 * 1024 * 1024
