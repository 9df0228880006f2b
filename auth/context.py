"""
auth/context.py -- Owner of every resilience component for one process.

AuthContext replaces ambient module-level state: the ErrorReporter, the
ConfigSandbox's FeatureAvailability and the registry engine all belong to one
explicitly constructed object with a start() and a close().

  context = AuthContext.from_settings(get_settings())
  context.start()              # storage init + AI-config sandbox
  context.check_styling()      # may block up to the detect timeout; run off-thread
  context.register({...}); context.login("alice", "...")
  context.close()

Any component can be passed in explicitly; tests use that to inject a
CryptoProvider without bcrypt or a sandbox initializer that raises.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Callable

from auth.crypto import CryptoProvider
from auth.lockout import LoginLockout
from auth.models import FeatureAvailability, RegistrationInput, Result, UserPublicView
from auth.registry import RegistryGateway, RegistryStorage
from auth.reporter import ErrorReporter
from auth.sandbox import ConfigSandbox
from auth.service import Authenticator
from core.ai_config import load_ai_config
from core.config import Settings
from core.style_guard import StyleGuard

logger = logging.getLogger("authguard.context")


class AuthContext:
    def __init__(
        self,
        settings: Settings,
        reporter: ErrorReporter | None = None,
        crypto: CryptoProvider | None = None,
        gateway: RegistryGateway | None = None,
        sandbox: ConfigSandbox | None = None,
        style_guard: StyleGuard | None = None,
        initializer: Callable[[], Mapping[str, Any]] | None = None,
        on_registered: Callable[[UserPublicView], None] | None = None,
        lockout: LoginLockout | None = None,
    ) -> None:
        self.settings = settings
        self.reporter = reporter or ErrorReporter(capacity=settings.error_log_capacity)
        self.crypto = crypto or CryptoProvider(
            self.reporter,
            bcrypt_rounds=settings.bcrypt_rounds,
            fallback_iterations=settings.fallback_hash_iterations,
        )
        self.gateway = gateway or RegistryGateway(RegistryStorage(settings.registry_db_url), self.reporter)
        self.sandbox = sandbox or ConfigSandbox(
            self.reporter,
            initializer or (lambda: load_ai_config(settings)),
        )
        self.style_guard = style_guard or StyleGuard(
            self.reporter,
            settings.stylesheet_url,
            probe_selector=settings.style_probe_selector,
            probe_property=settings.style_probe_property,
        )
        if lockout is None:
            lockout = LoginLockout(
                max_failures=settings.login_max_failures,
                lockout_seconds=settings.login_lockout_seconds,
            )
        self.lockout = lockout
        self.authenticator = Authenticator(
            self.crypto,
            self.gateway,
            self.reporter,
            on_registered=on_registered,
            lockout=self.lockout,
        )
        self.storage_ready = False

    @classmethod
    def from_settings(cls, settings: Settings, **overrides) -> AuthContext:
        return cls(settings, **overrides)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Prepare storage and run the AI-config sandbox once.

        Neither step raises. A storage failure is reported and leaves
        storage_ready False; register/login then fail with a REGISTRY error.
        """
        init = self.gateway.ensure_storage_initialized()
        self.storage_ready = init.ok
        if not init.ok:
            logger.error("Registry storage could not be initialized")
        availability = self.sandbox.initialize()
        logger.info(
            "Auth context started (storage_ready=%s, ai_enabled=%s)",
            self.storage_ready,
            availability.ai_enabled,
        )

    def check_styling(self) -> bool:
        """Run styling detection and activate the fallback on a miss.

        Returns True when the fallback is active afterwards.
        """
        if not self.style_guard.detect(self.settings.style_detect_timeout_ms):
            self.style_guard.activate_fallback()
        return self.style_guard.fallback_active

    def close(self) -> None:
        self.gateway.storage.close()
        self.reporter.clear()
        self.lockout.reset()
        logger.info("Auth context closed")

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    def register(self, data: RegistrationInput | Mapping) -> Result[UserPublicView]:
        return self.authenticator.register(data)

    def login(self, identifier: str, secret: str) -> Result[UserPublicView]:
        return self.authenticator.login(identifier, secret)

    def get_feature_availability(self) -> FeatureAvailability:
        return self.sandbox.availability

    def get_style_fallback_active(self) -> bool:
        return self.style_guard.fallback_active
