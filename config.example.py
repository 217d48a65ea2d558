# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a
local .env file, read with python-dotenv). Do NOT commit real secrets; keep
them in .env (gitignored).
"""

ENV_VARS = {
    # App / logging
    "KANBOT_APP_NAME": "App display name (default: kanbot).",
    "KANBOT_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Connectors
    "KANBOT_CONSOLE_ENABLED": "Enable console connector (true/false, default: true).",
    "KANBOT_MATRIX_ENABLED": "Enable Matrix connector (true/false, default: false).",
    # LLM (OpenAI-compatible, OpenRouter by default)
    "KANBOT_LLM_API_KEY": "API key; OPENROUTER_API_KEY / OPENAI_API_KEY are also read. "
    "Without a key, tasks are parsed by keyword rules.",
    "KANBOT_LLM_BASE_URL": "Base URL (default: https://openrouter.ai/api/v1).",
    "KANBOT_LLM_MODELS": "Comma/space separated list of models to try in order.",
    "KANBOT_LLM_TIMEOUT_SECONDS": "Per-request timeout (default: 10).",
    "KANBOT_HTTP_REFERER": "Optional OpenRouter metadata header.",
    # Reminders
    "KANBOT_REMINDER_INTERVAL_SECONDS": "How often the reminder scan runs (default: 60).",
    "KANBOT_REMINDER_ROOM_ID": "Matrix room that receives reminders "
    "(default: first allowed room, else any joined room).",
    "KANBOT_STORE_TIMEOUT_SECONDS": "Timeout for store calls and reminder posts (default: 10).",
    "KANBOT_PUBLIC_URL": "Board URL used for 'View Task' links (default: http://localhost:3000).",
    "KANBOT_TIMEZONE": "IANA zone for due dates, e.g. Europe/Berlin (default: process local time).",
    # Health
    "KANBOT_HEARTBEAT_INTERVAL_SECONDS": "Console-mode heartbeat period (default: 60).",
    "KANBOT_HEARTBEAT_STALE_SECONDS": "Heartbeat age after which the bot reports degraded (default: 120).",
    # Matrix
    "KANBOT_MATRIX_HOMESERVER": "Matrix homeserver URL.",
    "KANBOT_MATRIX_USER_ID": "Matrix user ID (bot).",
    "KANBOT_MATRIX_PASSWORD": "Password for first login (session stored locally).",
    "KANBOT_MATRIX_ROOMS": "Optional allowlist of room IDs (empty => all rooms).",
    # Paths (gitignored)
    "KANBOT_DATA_DIR": "Local data directory, also holds kanbot.log (default: .local/kanbot).",
    "KANBOT_MATRIX_STORE_PATH": "Matrix session/encryption store (default: <data_dir>/matrix_store).",
    "KANBOT_TASKS_DB_PATH": "Board SQLite path (default: <data_dir>/board.sqlite3).",
}
