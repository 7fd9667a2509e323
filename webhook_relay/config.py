"""
Centralized Configuration System
Environment-aware settings for the ingress, queue, payload store and delivery worker.
"""
from functools import lru_cache
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when settings cannot be resolved into a valid topology."""
    pass


class QueueConfig(BaseModel):
    """Queue behaviour shared by both topologies."""
    visibility_timeout_seconds: float = 180.0
    max_receive_count: int = Field(default=5, ge=1)
    dead_letter_enabled: bool = True
    fifo_queue: bool = False
    content_based_deduplication: bool = False
    max_message_bytes: int = Field(default=262_144, gt=0)


class DirectConfig(BaseModel):
    """Ingress enqueues the decoded payload; the worker posts the message body."""
    topology: Literal["direct"] = "direct"
    delivery_endpoint: str
    delivery_timeout_seconds: float = 10.0
    default_message_group_id: Optional[str] = None


class IndirectConfig(BaseModel):
    """Ingress stores the payload; the store notifies the queue with a pointer."""
    topology: Literal["indirect"] = "indirect"
    delivery_endpoint: str
    delivery_timeout_seconds: float = 10.0
    payload_bucket: str = "webhook-payloads"
    delete_payload_obj: bool = False
    store_timeout_seconds: float = 5.0


TopologyConfig = Annotated[
    Union[DirectConfig, IndirectConfig],
    Field(discriminator="topology"),
]

_topology_adapter = TypeAdapter(TopologyConfig)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow"
    )
    """
    Production-grade configuration management.
    Loads from environment variables with sensible defaults.
    """

    # ============================================
    # DELIVERY
    # ============================================
    delivery_endpoint: Optional[str] = None
    delivery_timeout_seconds: float = 10.0
    topology: Literal["direct", "indirect"] = "direct"

    # ============================================
    # INGRESS
    # ============================================
    ingress_path: str = "/webhooks"
    default_message_group_id: Optional[str] = None

    # ============================================
    # QUEUE
    # ============================================
    visibility_timeout_seconds: float = 180.0
    max_receive_count: int = 5
    dead_letter_enabled: bool = True
    fifo_queue: bool = False
    content_based_deduplication: bool = False
    max_message_bytes: int = 262_144  # 256 KiB

    # ============================================
    # PAYLOAD STORE (indirect topology)
    # ============================================
    payload_store_backend: Literal["memory", "mongodb"] = "memory"
    payload_bucket: str = "webhook-payloads"
    delete_payload_obj: bool = False
    store_timeout_seconds: float = 5.0

    # ============================================
    # MONGODB
    # ============================================
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "webhook_relay"
    mongodb_max_pool_size: int = 50
    mongodb_min_pool_size: int = 5
    mongodb_server_selection_timeout_ms: int = 5000

    # ============================================
    # WORKER
    # ============================================
    worker_max_concurrent: int = 10
    worker_poll_interval_seconds: float = 1.0

    # ============================================
    # LOGGING
    # ============================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    enable_structured_logging: bool = False  # Set to True for production JSON logs

    # ============================================
    # ENVIRONMENT
    # ============================================
    environment: Literal["development", "staging", "production"] = "development"

    def queue_config(self) -> QueueConfig:
        """Build the queue configuration from flat settings."""
        try:
            return QueueConfig(
                visibility_timeout_seconds=self.visibility_timeout_seconds,
                max_receive_count=self.max_receive_count,
                dead_letter_enabled=self.dead_letter_enabled,
                fifo_queue=self.fifo_queue,
                content_based_deduplication=self.content_based_deduplication,
                max_message_bytes=self.max_message_bytes,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid queue configuration: {e}") from e

    def topology_config(self) -> DirectConfig | IndirectConfig:
        """
        Resolve the delivery topology once, at startup.

        Raises:
            ConfigurationError: If the endpoint is missing or the combination
                of options is not supported (FIFO queues cannot receive
                payload store notifications).
        """
        if not self.delivery_endpoint:
            raise ConfigurationError("DELIVERY_ENDPOINT is required")

        if self.topology == "indirect" and self.fifo_queue:
            raise ConfigurationError(
                "FIFO queues cannot be used with the indirect topology"
            )

        if self.topology == "direct":
            raw = {
                "topology": "direct",
                "delivery_endpoint": self.delivery_endpoint,
                "delivery_timeout_seconds": self.delivery_timeout_seconds,
                "default_message_group_id": self.default_message_group_id,
            }
        else:
            raw = {
                "topology": "indirect",
                "delivery_endpoint": self.delivery_endpoint,
                "delivery_timeout_seconds": self.delivery_timeout_seconds,
                "payload_bucket": self.payload_bucket,
                "delete_payload_obj": self.delete_payload_obj,
                "store_timeout_seconds": self.store_timeout_seconds,
            }

        try:
            return _topology_adapter.validate_python(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid topology configuration: {e}") from e


@lru_cache()
def get_settings() -> Settings:
    """
    Singleton pattern for settings.
    Uses LRU cache to ensure only one Settings instance exists.
    """
    return Settings()

