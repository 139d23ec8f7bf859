import setup_bot
from config import REQUIRED_ENV_VARS


def test_creates_env_file_with_every_required_key(tmp_path):
    path = tmp_path / '.env'

    assert setup_bot.create_env_file(str(path)) is True

    content = path.read_text(encoding='utf-8')
    for name in REQUIRED_ENV_VARS:
        assert f"{name}=" in content


def test_does_not_overwrite_existing_env_file(tmp_path):
    path = tmp_path / '.env'
    path.write_text('DISCORD_TOKEN=keep-me\n', encoding='utf-8')

    assert setup_bot.create_env_file(str(path)) is False
    assert path.read_text(encoding='utf-8') == 'DISCORD_TOKEN=keep-me\n'
