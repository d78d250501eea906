# onecount/config.py
import os
from typing import List, Tuple

from dotenv import load_dotenv

# Load environment variables first
dotenv_path = os.path.join(os.path.dirname(__file__), '../.env')
load_dotenv(dotenv_path)

# --- Image Upload Limits ---
MAX_IMAGE_SIZE_MB = float(os.environ.get("MAX_IMAGE_SIZE_MB", "5"))
MAX_IMAGE_SIZE_BYTES = int(MAX_IMAGE_SIZE_MB * 1024 * 1024)

# Categorical tags handed out to members in order of creation
MEMBER_COLORS: Tuple[str, ...] = ("emerald", "sky", "amber", "rose", "violet", "cyan", "lime", "orange")

PFAND_TOKEN = "pfand"
PFAND_SUMMARY_NAME = "Pfand (Summarized)"


def get_gemini_config() -> Tuple[str | None, str]:
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    MODEL_NAME = os.environ.get("GEMINI_MODEL_NAME", "gemini-2.5-flash")
    return GEMINI_API_KEY, MODEL_NAME


def get_initial_member_names() -> List[str]:
    raw = os.environ.get("ONECOUNT_INITIAL_MEMBERS", "Person 1, Person 2")
    return [name.strip() for name in raw.split(',') if name.strip()]
