from pajr.config import Settings


def test_defaults_without_environment(monkeypatch):
    for name in (
        "GEMINI_API_KEY",
        "API_KEY",
        "gemini_api_key",
        "PAJR_STORE_BACKEND",
        "PAJR_SEED_DEMO_PATIENTS",
        "SUPABASE_URL",
        "SUPABASE_ANON_KEY",
        "SUPABASE_SERVICE_KEY",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings()
    assert settings.gemini_api_key is None
    assert settings.store_backend == "local"
    assert settings.analysis_timeout_sec == 30
    assert settings.history_vitals_window == 3
    assert settings.seed_demo_patients is True
    assert settings.supabase_configured is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("API_KEY", "k-123")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("PAJR_STORE_BACKEND", "Remote")
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "service")
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    monkeypatch.setenv("PAJR_SEED_DEMO_PATIENTS", "off")
    monkeypatch.setenv("PAJR_ANALYSIS_TIMEOUT_SEC", "2.5")

    settings = Settings()
    assert settings.gemini_api_key == "k-123"
    assert settings.store_backend == "supabase"
    assert settings.supabase_configured is True
    assert settings.seed_demo_patients is False
    assert settings.analysis_timeout_sec == 2.5
