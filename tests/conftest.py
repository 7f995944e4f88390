import os
import tempfile

# db resolves its path at import time, so point it at a throwaway file first.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="dispatch-tests-")
os.environ.setdefault("APP_DB_PATH", os.path.join(_TEST_DB_DIR, "app.db"))
os.environ.setdefault("FLASK_SECRET_KEY", "test-secret")
os.environ.setdefault("APP_ENV", "test")
