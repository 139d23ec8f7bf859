import os
import subprocess
import sys
from textwrap import dedent

# --- Configuration for Installer ---
DOTENV_PATH = '.env'
REQUIREMENTS_PATH = 'requirements.txt'
BOT_FILE_NAME = 'pz_bot.py'

# Template for the .env file with essential configuration placeholders
ENV_TEMPLATE = dedent("""\
    # ======================================================================================================
    # REQUIRED CONFIGURATION
    #
    # 1. DISCORD_TOKEN: Get this from the Discord Developer Portal for your bot.
    # 2. PZ_SERVER_IP / PZ_RCON_PORT / PZ_RCON_PASSWORD: RCONPort and RCONPassword from your servertest.ini.
    #
    # NOTE: You MUST replace all placeholder values (e.g., 'YOUR_DISCORD_BOT_TOKEN_HERE') with your actual credentials.
    # ======================================================================================================

    DISCORD_TOKEN="YOUR_DISCORD_BOT_TOKEN_HERE"
    PZ_SERVER_IP="127.0.0.1"
    PZ_RCON_PORT=27015
    PZ_RCON_PASSWORD="YOUR_RCON_PASSWORD_HERE"

    # ======================================================================================================
    # DISCORD CHANNELS AND ROLES (optional, leave empty to disable the feature)
    # ======================================================================================================

    TARGET_CHANNEL_ID=            # Greetings and member welcome/goodbye messages
    PZ_NOTIFICATIONS_CHANNEL_ID=  # Player joins/leaves and restart status
    ANNOUNCEMENT_CHANNEL_ID=      # Default channel for !dcmessage
    ADMIN_ROLE_ID=                # Role allowed to use admin commands (default: Administrator permission)

    # ======================================================================================================
    # RESTARTS AND MISC
    # ======================================================================================================

    RESTART_SCHEDULE="0 0 */8 * * *"  # sec min hour day month weekday (or "04:00,16:00")
    RESTART_TIMEZONE="UTC"
    PORT=3000                         # Health check web server
    SERVER_NAME="PZ"
    LOG_LEVEL="INFO"
""")


def check_python_version():
    """Checks if the required Python version (3.10+) is running."""
    if sys.version_info < (3, 10):
        print("❌ Error: Python 3.10 or higher is required.")
        print(f"You are running Python {sys.version_info.major}.{sys.version_info.minor}.")
        sys.exit(1)
    print(f"✅ Python {sys.version_info.major}.{sys.version_info.minor} detected.")


def install_dependencies(requirements_path=REQUIREMENTS_PATH):
    """Installs required Python packages using pip."""
    print(f"\n⚙️ Installing dependencies from {requirements_path}...")
    try:
        subprocess.check_call([sys.executable, '-m', 'pip', 'install', '-r', requirements_path])
        print("✅ Dependencies installed successfully.")
    except subprocess.CalledProcessError as e:
        print(f"❌ Error during dependency installation. Check your internet connection and pip setup. Error: {e}")
        sys.exit(1)


def create_env_file(path=DOTENV_PATH) -> bool:
    """Creates the .env configuration file. Returns False if one already exists."""
    if os.path.exists(path):
        print(f"⚠️ '{path}' already exists. Skipping creation.")
        return False

    try:
        with open(path, 'w', encoding='utf-8') as f:
            f.write(ENV_TEMPLATE)
    except OSError as e:
        print(f"❌ Error writing '{path}'. Check permissions. Error: {e}")
        sys.exit(1)
    print(f"✅ Created configuration file: '{path}'")
    print("   -> Please open this file and fill in all the placeholder values!")
    return True


def main():
    print("==============================================")
    print("🤖 PZ Restart Bot Setup Wizard")
    print("==============================================")

    check_python_version()

    if not os.path.exists(REQUIREMENTS_PATH):
        print(f"❌ FATAL: '{REQUIREMENTS_PATH}' not found. Please ensure it is in the same directory as the installer.")
        sys.exit(1)

    install_dependencies()
    create_env_file()

    print("\n==============================================")
    print("🎉 SETUP COMPLETE! NEXT STEPS:")
    print("==============================================")
    print("1. **Edit the '.env' file** that was just created. Fill in the Discord token, RCON password and channel IDs.")
    print(f"2. Run the bot with `python {BOT_FILE_NAME}`.")
    print("==============================================")


if __name__ == "__main__":
    main()
