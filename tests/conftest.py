import os
import tempfile

# Keep the app's default sqlite file out of the working tree.
os.environ.setdefault("LEDGER_DATA_DIR", tempfile.mkdtemp(prefix="ledger-tests-"))
