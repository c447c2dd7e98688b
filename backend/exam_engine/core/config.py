from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    DATABASE_URL: str = "sqlite+aiosqlite:///./exam_engine.db"
    LOG_LEVEL: str = "INFO"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Judge0 (RapidAPI or self-hosted)
    JUDGE0_API_URL: str = "https://judge0-ce.p.rapidapi.com"
    JUDGE0_API_HOST: str = "judge0-ce.p.rapidapi.com"
    JUDGE0_API_KEY: str | None = None

    # Collaborators
    AUTHORING_API_URL: str = "http://localhost:4000/api"
    RESULTS_API_URL: str = "http://localhost:4000/api"

    # Session policy
    START_TOLERANCE_SECONDS: float = 1.0
    TIMER_STALE_AFTER_SECONDS: int = 3600
    DEFAULT_DURATION_SECONDS: int = 3600
    JUDGE_MAX_POLL_ATTEMPTS: int = 10
    JUDGE_POLL_INTERVAL_MS: int = 500
    RATE_LIMIT_BACKOFF_SECONDS: float = 5.0
    TEST_CASE_DELAY_SECONDS: float = 1.0
    SUBMIT_UNLOCK_MINUTES: int = 20
    CLOCK_CHECK_INTERVAL_SECONDS: int = 300
    LOW_TIME_WARNING_SECONDS: int = 300
    SUBMIT_AUTO_RETRY_LIMIT: int = 3
    SUBMIT_AUTO_RETRY_SECONDS: float = 5.0


@dataclass(frozen=True)
class SessionPolicy:
    """Tunable constants for one exam session, detached from the environment."""

    start_tolerance_seconds: float = 1.0
    timer_stale_after_seconds: int = 3600
    default_duration_seconds: int = 3600
    judge_max_poll_attempts: int = 10
    judge_poll_interval_ms: int = 500
    rate_limit_backoff_seconds: float = 5.0
    test_case_delay_seconds: float = 1.0
    submit_unlock_minutes: int = 20
    clock_check_interval_seconds: int = 300
    low_time_warning_seconds: int = 300
    submit_auto_retry_limit: int = 3
    submit_auto_retry_seconds: float = 5.0

    @staticmethod
    def from_settings(source: Settings) -> "SessionPolicy":
        return SessionPolicy(
            start_tolerance_seconds=source.START_TOLERANCE_SECONDS,
            timer_stale_after_seconds=source.TIMER_STALE_AFTER_SECONDS,
            default_duration_seconds=source.DEFAULT_DURATION_SECONDS,
            judge_max_poll_attempts=source.JUDGE_MAX_POLL_ATTEMPTS,
            judge_poll_interval_ms=source.JUDGE_POLL_INTERVAL_MS,
            rate_limit_backoff_seconds=source.RATE_LIMIT_BACKOFF_SECONDS,
            test_case_delay_seconds=source.TEST_CASE_DELAY_SECONDS,
            submit_unlock_minutes=source.SUBMIT_UNLOCK_MINUTES,
            clock_check_interval_seconds=source.CLOCK_CHECK_INTERVAL_SECONDS,
            low_time_warning_seconds=source.LOW_TIME_WARNING_SECONDS,
            submit_auto_retry_limit=source.SUBMIT_AUTO_RETRY_LIMIT,
            submit_auto_retry_seconds=source.SUBMIT_AUTO_RETRY_SECONDS,
        )


settings = Settings()
