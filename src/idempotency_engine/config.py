"""Configuration module for the idempotency engine.

This module provides the IdempotencyConfig class that controls which requests
the engine intercepts, how long locks and records live, request and response
size limits, and which cache backend holds the records.

Example:
    Basic usage with defaults:

        >>> config = IdempotencyConfig()
        >>> config.enabled_methods
        ['POST', 'PUT', 'PATCH', 'DELETE']

    Custom configuration:

        >>> config = IdempotencyConfig(
        ...     enabled_methods=["POST"],
        ...     lock_lease_seconds=10,
        ...     record_ttl_seconds=3600,
        ...     storage_adapter="redis",
        ...     redis_url="redis://myhost:6379/0"
        ... )

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_LOCK_LEASE_SECONDS'] = '15'
        >>> os.environ['IDEMPOTENCY_RECORD_TTL_SECONDS'] = '3600'
        >>> config = IdempotencyConfig.from_env()
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

VALID_HTTP_METHODS = {
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "DELETE",
    "CONNECT",
    "OPTIONS",
    "TRACE",
    "PATCH",
}


class IdempotencyConfig(BaseModel):
    """Configuration for the idempotency engine.

    Attributes:
        enabled_methods: HTTP methods that require an idempotency key.
            Requests with any other method bypass the engine entirely.
            Default is every state-changing method: POST, PUT, PATCH, DELETE.
        key_header: Name of the request header carrying the idempotency key.
        max_key_length: Longest accepted idempotency key.
        lock_lease_seconds: Lease on the per-key processing lock. Must cover
            worst-case handler latency; after a crash it bounds how long
            duplicates are turned away. Between 1 and 3600.
        record_ttl_seconds: Lifetime of an idempotency record, counted from
            creation and never extended. Between 1 and 604800 (7 days) and
            never shorter than the lock lease.
        max_body_bytes: Largest request body accepted for fingerprinting.
            0 means unlimited.
        max_response_bytes: Largest response body the engine will capture
            for replay. 0 means unlimited.
        fingerprint_headers: Header names folded into the fingerprint,
            lowercased.
        storage_adapter: Cache backend, "memory" or "redis".
        redis_url: Connection URL used when storage_adapter is "redis".
        key_prefix: Namespace prefix for record and lock keys.
        audit_queue_size: Capacity of the durable sink queue.

    Note:
        This class is immutable (frozen=True). Create a new instance if you
        need different settings.
    """

    enabled_methods: list[str] | str = Field(
        default=["POST", "PUT", "PATCH", "DELETE"],
        description="HTTP methods that require an idempotency key",
    )
    key_header: str = Field(
        default="Idempotency-Key",
        description="Request header carrying the idempotency key",
    )
    max_key_length: int = Field(
        default=255,
        description="Maximum idempotency key length (1-1024)",
    )
    lock_lease_seconds: int = Field(
        default=30,
        description="Lease duration of the per-key processing lock (1-3600)",
    )
    record_ttl_seconds: int = Field(
        default=86400,
        description="Time-to-live in seconds for idempotency records (1-604800)",
    )
    max_body_bytes: int = Field(
        default=1048576,
        description="Maximum request body size in bytes (0=unlimited)",
    )
    max_response_bytes: int = Field(
        default=1048576,
        description="Maximum response body size captured for replay (0=unlimited)",
    )
    fingerprint_headers: list[str] | str = Field(
        default=["content-type"],
        description="HTTP header names included in the request fingerprint",
    )
    storage_adapter: Literal["memory", "redis"] = Field(
        default="memory",
        description="Cache backend holding records and locks",
    )
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Connection URL for the Redis cache backend",
    )
    key_prefix: str = Field(
        default="idem",
        description="Namespace prefix for record and lock keys",
    )
    audit_queue_size: int = Field(
        default=1000,
        description="Capacity of the durable sink queue",
    )

    model_config = {"frozen": True}

    @field_validator("enabled_methods", mode="before")
    @classmethod
    def validate_enabled_methods(cls, v: Any) -> list[str]:
        """Validate and normalize enabled HTTP methods.

        Raises:
            ValueError: If any method is not a valid HTTP method.

        Example:
            >>> config = IdempotencyConfig(enabled_methods=["post", "put"])
            >>> config.enabled_methods
            ['POST', 'PUT']
        """
        if isinstance(v, str):
            v = [method.strip() for method in v.split(",") if method.strip()]

        if not isinstance(v, list):
            raise ValueError("enabled_methods must be a list or comma-separated string")

        methods = [method.upper() for method in v]

        invalid_methods = set(methods) - VALID_HTTP_METHODS
        if invalid_methods:
            raise ValueError(
                f"Invalid HTTP methods: {', '.join(sorted(invalid_methods))}. "
                f"Valid methods are: {', '.join(sorted(VALID_HTTP_METHODS))}"
            )

        return methods

    @field_validator("key_header")
    @classmethod
    def validate_key_header(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("key_header cannot be empty")
        return v.strip()

    @field_validator("max_key_length")
    @classmethod
    def validate_max_key_length(cls, v: int) -> int:
        if not (1 <= v <= 1024):
            raise ValueError(f"max_key_length must be between 1 and 1024, got {v}")
        return v

    @field_validator("lock_lease_seconds")
    @classmethod
    def validate_lock_lease_seconds(cls, v: int) -> int:
        """Validate the lock lease is within acceptable range.

        Raises:
            ValueError: If the lease is not between 1 and 3600 (1 hour).
        """
        if not (1 <= v <= 3600):
            raise ValueError(f"lock_lease_seconds must be between 1 and 3600 (1 hour), got {v}")
        return v

    @field_validator("record_ttl_seconds")
    @classmethod
    def validate_record_ttl_seconds(cls, v: int) -> int:
        """Validate TTL is within acceptable range.

        Raises:
            ValueError: If TTL is not between 1 and 604800 (7 days).
        """
        if not (1 <= v <= 604800):
            raise ValueError(f"record_ttl_seconds must be between 1 and 604800 (7 days), got {v}")
        return v

    @field_validator("max_body_bytes", "max_response_bytes")
    @classmethod
    def validate_size_limit(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"size limits must be >= 0, got {v}")
        return v

    @field_validator("audit_queue_size")
    @classmethod
    def validate_audit_queue_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"audit_queue_size must be >= 1, got {v}")
        return v

    @field_validator("fingerprint_headers", mode="before")
    @classmethod
    def validate_fingerprint_headers(cls, v: Any) -> list[str]:
        """Validate and normalize fingerprint headers to lowercase.

        Example:
            >>> config = IdempotencyConfig(fingerprint_headers=["Content-Type", "X-Tenant"])
            >>> config.fingerprint_headers
            ['content-type', 'x-tenant']
        """
        if isinstance(v, str):
            v = [header.strip() for header in v.split(",") if header.strip()]

        if not isinstance(v, list):
            raise ValueError("fingerprint_headers must be a list or comma-separated string")

        return [header.lower() for header in v]

    @model_validator(mode="after")
    def validate_ttl_covers_lease(self) -> "IdempotencyConfig":
        """A record must outlive the lock that guards its creation.

        Raises:
            ValueError: If record_ttl_seconds is shorter than lock_lease_seconds.
        """
        if self.record_ttl_seconds < self.lock_lease_seconds:
            raise ValueError(
                f"record_ttl_seconds ({self.record_ttl_seconds}) must be >= "
                f"lock_lease_seconds ({self.lock_lease_seconds})"
            )
        return self

    def requires_key(self, method: str) -> bool:
        """Whether requests with this method go through the engine."""
        return method.upper() in self.enabled_methods

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "IdempotencyConfig":
        """Create configuration from environment variables.

        Variable names are the uppercase field names with the prefix, for
        example ``IDEMPOTENCY_LOCK_LEASE_SECONDS``. Missing variables keep
        their defaults.

        Example:
            >>> import os
            >>> os.environ['IDEMPOTENCY_ENABLED_METHODS'] = 'POST,PUT'
            >>> config = IdempotencyConfig.from_env()
            >>> config.enabled_methods
            ['POST', 'PUT']
        """
        config_dict: dict[str, Any] = {}

        field_types = {
            "enabled_methods": list,
            "key_header": str,
            "max_key_length": int,
            "lock_lease_seconds": int,
            "record_ttl_seconds": int,
            "max_body_bytes": int,
            "max_response_bytes": int,
            "fingerprint_headers": list,
            "storage_adapter": str,
            "redis_url": str,
            "key_prefix": str,
            "audit_queue_size": int,
        }

        for field_name, field_type in field_types.items():
            env_value = os.environ.get(f"{prefix}{field_name.upper()}")
            if env_value is None:
                continue
            if field_type is int:
                config_dict[field_name] = int(env_value)
            else:
                # Lists stay comma-separated strings; the validators split them
                config_dict[field_name] = env_value

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "IdempotencyConfig":
        """Create configuration from a dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)
