"""
Configuration

Process-wide settings read from the environment (and an optional .env
file), plus the translation of those settings into a confluent-kafka
client configuration dict shared by the admin client, the producer and
every ephemeral consumer.
"""

import json
from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the broker clients, the MCP transport and logging."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ---------- Kafka clients ----------
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_client_id: str = "kafka-ops-mcp"

    kafka_security_protocol: str = "PLAINTEXT"   # SSL, SASL_PLAINTEXT, SASL_SSL
    kafka_sasl_mechanism: str = "PLAIN"          # SCRAM-SHA-256, SCRAM-SHA-512, OAUTHBEARER
    kafka_sasl_username: Optional[str] = None
    kafka_sasl_password: Optional[str] = None
    kafka_oauth_token: Optional[str] = None

    kafka_ssl_cafile: Optional[str] = None
    kafka_ssl_certfile: Optional[str] = None
    kafka_ssl_keyfile: Optional[str] = None
    kafka_ssl_keypassword: Optional[str] = None
    kafka_ssl_no_verify: bool = False

    # Raw librdkafka properties, merged last
    kafka_extra_config: Dict[str, str] = Field(default_factory=dict)

    kafka_request_timeout_seconds: float = Field(default=30.0, gt=0)
    kafka_produce_timeout_seconds: float = Field(default=10.0, gt=0)

    # ---------- MCP transport ----------
    mcp_transport: str = "sse"
    mcp_host: str = "0.0.0.0"
    mcp_port: int = Field(default=8080, ge=1, le=65535)
    mcp_accepted_status_rewrite: bool = True

    # ---------- Logging ----------
    log_level: str = "INFO"

    @field_validator("kafka_extra_config", mode="before")
    def _parse_extra_config(cls, v):
        """Accept a JSON object string or a mapping."""
        if v is None or v == "":
            return {}
        if isinstance(v, str):
            parsed = json.loads(v)
            if not isinstance(parsed, dict):
                raise ValueError("KAFKA_EXTRA_CONFIG must be a JSON object")
            v = parsed
        return {str(k): str(val) for k, val in dict(v).items()}

    @field_validator("mcp_transport")
    def _check_transport(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("sse", "stdio"):
            raise ValueError(f"Unsupported MCP transport: {v}")
        return v

    @field_validator("kafka_security_protocol")
    def _check_protocol(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in ("PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL"):
            raise ValueError(f"Unsupported security protocol: {v}")
        return v


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


# =========================================================================
#  Client config builder
# =========================================================================

def build_client_config(settings: Settings) -> Dict[str, Any]:
    """Build a confluent-kafka configuration dict from the settings."""
    conf: Dict[str, Any] = {
        "bootstrap.servers": settings.kafka_bootstrap_servers,
        "client.id": settings.kafka_client_id,
        "security.protocol": settings.kafka_security_protocol,
    }
    protocol = settings.kafka_security_protocol

    # SASL
    if protocol in ("SASL_PLAINTEXT", "SASL_SSL"):
        mechanism = settings.kafka_sasl_mechanism
        conf["sasl.mechanism"] = mechanism
        if mechanism in ("PLAIN", "SCRAM-SHA-256", "SCRAM-SHA-512"):
            if settings.kafka_sasl_username:
                conf["sasl.username"] = settings.kafka_sasl_username
            if settings.kafka_sasl_password:
                conf["sasl.password"] = settings.kafka_sasl_password
        elif mechanism == "OAUTHBEARER":
            if settings.kafka_oauth_token:
                conf["sasl.oauthbearer.config"] = settings.kafka_oauth_token

    # SSL/TLS
    if protocol in ("SSL", "SASL_SSL"):
        if settings.kafka_ssl_cafile:
            conf["ssl.ca.location"] = settings.kafka_ssl_cafile
        if settings.kafka_ssl_certfile:
            conf["ssl.certificate.location"] = settings.kafka_ssl_certfile
        if settings.kafka_ssl_keyfile:
            conf["ssl.key.location"] = settings.kafka_ssl_keyfile
        if settings.kafka_ssl_keypassword:
            conf["ssl.key.password"] = settings.kafka_ssl_keypassword
        if settings.kafka_ssl_no_verify:
            conf["enable.ssl.certificate.verification"] = "false"

    if settings.kafka_extra_config:
        conf.update(settings.kafka_extra_config)

    return conf
