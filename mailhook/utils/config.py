"""Configuration management using environment variables."""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv


class Config:
    """
    Application configuration loaded from environment variables.

    Environment variables can be set in a .env file in the project root.

    Attributes:
        GMAIL_CLIENT_SECRETS_PATH: Path to the OAuth web client secrets file
        OAUTH_REDIRECT_URI: Redirect endpoint registered with Google
        GCP_PROJECT_ID: Cloud project owning the notification topic
        PUBSUB_TOPIC: Short name of the notification topic
        DATABASE_PATH: SQLite database holding mailbox state
        SYNC_ADVANCE_POLICY: Checkpoint policy when dispatch fails
        API_MAX_RETRIES: Retry bound for change-log and list calls
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        LOG_DIR: Directory for log files

    Example:
        >>> config = Config.load()
        >>> print(config.notification_topic)
        projects/my-project/topics/gmail-driver-webhooks
    """

    VALID_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
    VALID_POLICIES = ['unconditional', 'require_dispatch_success']

    GMAIL_CLIENT_SECRETS_PATH: str
    OAUTH_REDIRECT_URI: str
    GCP_PROJECT_ID: str
    PUBSUB_TOPIC: str
    DATABASE_PATH: str
    SYNC_ADVANCE_POLICY: str
    API_MAX_RETRIES: int
    LOG_LEVEL: str
    LOG_DIR: str

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.GMAIL_CLIENT_SECRETS_PATH = os.getenv(
            'GMAIL_CLIENT_SECRETS_PATH',
            'credentials/client_secret.json'
        )
        self.OAUTH_REDIRECT_URI = os.getenv(
            'OAUTH_REDIRECT_URI',
            'http://localhost:8080/oauth/redirect'
        )
        self.GCP_PROJECT_ID = os.getenv('GCP_PROJECT_ID', '')
        self.PUBSUB_TOPIC = os.getenv('PUBSUB_TOPIC', 'gmail-driver-webhooks')
        self.DATABASE_PATH = os.getenv('DATABASE_PATH', 'data/mailhook.db')
        self.SYNC_ADVANCE_POLICY = os.getenv(
            'SYNC_ADVANCE_POLICY', 'unconditional'
        ).lower()
        self.API_MAX_RETRIES = int(os.getenv('API_MAX_RETRIES', '3'))
        self.LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
        self.LOG_DIR = os.getenv('LOG_DIR', 'logs')

    @classmethod
    def load(cls, env_file: Optional[str] = None) -> 'Config':
        """
        Load configuration from .env file and environment variables.

        Args:
            env_file: Path to .env file (defaults to .env in project root)

        Returns:
            Config instance
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        return cls()

    @property
    def notification_topic(self) -> str:
        """Fully qualified Pub/Sub topic name used for mailbox watches."""
        return f"projects/{self.GCP_PROJECT_ID}/topics/{self.PUBSUB_TOPIC}"

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If a value is missing or invalid
        """
        if self.LOG_LEVEL not in self.VALID_LEVELS:
            raise ValueError(
                f"Invalid LOG_LEVEL: {self.LOG_LEVEL}. "
                f"Must be one of {self.VALID_LEVELS}"
            )

        if self.SYNC_ADVANCE_POLICY not in self.VALID_POLICIES:
            raise ValueError(
                f"Invalid SYNC_ADVANCE_POLICY: {self.SYNC_ADVANCE_POLICY}. "
                f"Must be one of {self.VALID_POLICIES}"
            )

        if self.API_MAX_RETRIES < 0:
            raise ValueError("API_MAX_RETRIES must not be negative")

        Path(self.LOG_DIR).mkdir(parents=True, exist_ok=True)
        Path(self.DATABASE_PATH).parent.mkdir(parents=True, exist_ok=True)

    def __repr__(self) -> str:
        """Return string representation of config."""
        return (
            f"Config("
            f"GMAIL_CLIENT_SECRETS_PATH={self.GMAIL_CLIENT_SECRETS_PATH}, "
            f"PUBSUB_TOPIC={self.PUBSUB_TOPIC}, "
            f"DATABASE_PATH={self.DATABASE_PATH}, "
            f"SYNC_ADVANCE_POLICY={self.SYNC_ADVANCE_POLICY}, "
            f"LOG_LEVEL={self.LOG_LEVEL}"
            ")"
        )
