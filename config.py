# config.py
import os
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent

load_dotenv()

class Config:
    SQLITE_DB_PATH = os.path.join(BASE_DIR, 'personal_store.db')
    PERSONAL_STORE_DB_URL = os.getenv('PERSONAL_STORE_DB_URL', f"sqlite:///{SQLITE_DB_PATH}")

    SUPABASE_URL = os.getenv('SUPABASE_URL')
    # The service only ever acts on behalf of the signed-in reader, so the anon key is enough
    SUPABASE_KEY = os.getenv('SUPABASE_SERVICE_KEY') or os.getenv('SUPABASE_ANON_KEY')

    PORT = int(os.getenv('PORT', 5001))

    # Persisted blob keys
    STORAGE_KEY = 'personal-store:v2'
    LEGACY_STORAGE_KEY = 'personal-store:v1'
    OWNER_STORAGE_KEY = 'personal-store:owner'

    # Cloud tables
    BOOKMARKS_TABLE = 'bible_user_bookmarks'
    HIGHLIGHTS_TABLE = 'bible_user_highlights'
    NOTES_TABLE = 'bible_user_notes'
    PLAN_PROGRESS_TABLE = 'bible_user_plan_progress'

    DELETE_BATCH_SIZE = 250
    DEFAULT_HIGHLIGHT_COLOR = '#FDE68A'
