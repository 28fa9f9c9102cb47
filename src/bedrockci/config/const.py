# bedrockci/config/const.py
from importlib.metadata import version, PackageNotFoundError

# --- Package Constants ---
package_name = "bedrockci"
app_author = "bedrockci"
app_name_title = "BedrockCI"
env_name = package_name.upper()

# Overrides the directory servers are installed into.
SERVER_PATH_ENV = "BEDROCK_SERVER_PATH"

# --- Server constants ---
SERVER_EXECUTABLE = "bedrock_server"
INSTALL_MARKER = ".bedrockci-install.json"
DEFAULT_LEVEL_NAME = "Bedrock level"
USER_AGENT = "bedrockci (+https://github.com/laurhinch/bedrockci)"

EULA_TEXT = """
By proceeding, you agree to the Minecraft End User License Agreement:
https://minecraft.net/eula
and the Privacy Policy:
https://go.microsoft.com/fwlink/?LinkId=521839

If you do not agree, you must not use this software.
"""


def get_installed_version() -> str:
    try:
        return version(package_name)
    except PackageNotFoundError:
        return "0.0.0"
