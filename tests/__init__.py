# Keep the settings written during the tests out of the user's configuration directory.
import os
import tempfile

os.environ.setdefault("TREEFORGE_CONFIG_DIR", tempfile.mkdtemp(prefix="treeforge_test_config_"))
