import os
from pathlib import Path

import run


def test_load_env_is_optional_and_does_not_override_env(tmp_path: Path, monkeypatch):
    env_path = tmp_path / ".env"
    env_path.write_text(
        "GOOGLE_MAPS_API_KEY=from-dotenv\nWORKERMATCH_API_TOKEN=token-from-dotenv\n",
        encoding="utf-8",
    )

    called = {}
    real_load_dotenv = run._load_dotenv

    def spy_load_dotenv(*, dotenv_path, override=False):
        called["dotenv_path"] = Path(dotenv_path).resolve()
        called["override"] = override
        return real_load_dotenv(dotenv_path=dotenv_path, override=override)

    monkeypatch.setattr(run, "_load_dotenv", spy_load_dotenv)
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "from-env")
    monkeypatch.delenv("WORKERMATCH_API_TOKEN", raising=False)

    run.load_env(root_dir=tmp_path)

    assert called["dotenv_path"] == env_path.resolve()
    assert called["override"] is False
    assert os.environ.get("GOOGLE_MAPS_API_KEY") == "from-env"
    assert os.environ.pop("WORKERMATCH_API_TOKEN", None) == "token-from-dotenv"


def test_load_env_missing_file_is_a_no_op(tmp_path: Path, monkeypatch):
    def fail(**_kwargs):
        raise AssertionError("load_dotenv should not be called")

    monkeypatch.setattr(run, "_load_dotenv", fail)
    run.load_env(root_dir=tmp_path)
