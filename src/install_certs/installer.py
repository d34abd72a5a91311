"""Trust establishment: capture the server chain, assemble a trust store, verify, save."""

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from install_certs.exceptions import TrustStoreError
from install_certs.models import InstallConfig, InstallResult, InstallStatus, ProbeResult
from install_certs.network import probe
from install_certs.trust_manager import ChainCapturingTrustManager
from install_certs.truststore import TrustStore, host_alias_pattern

logger = logging.getLogger(__name__)

ProbeFn = Callable[..., ProbeResult]
ConfirmFn = Callable[[Path], bool]


class InstallState(str, Enum):
    INITIAL = "INITIAL"
    CHAIN_CAPTURED = "CHAIN_CAPTURED"
    STORE_ASSEMBLED = "STORE_ASSEMBLED"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"


class TrustInstaller:
    """
    Runs one installation against config.host:config.port.

    Pass 1 captures the chain (and tells whether the defaults already trust
    it), pass 2 verifies the assembled store with a fresh trust manager. The
    store is written only after pass 2 succeeded.
    """

    def __init__(
        self,
        config: InstallConfig,
        confirm_overwrite: Optional[ConfirmFn] = None,
        probe_fn: ProbeFn = probe,
    ):
        self.config = config
        self.confirm_overwrite = confirm_overwrite
        self.probe_fn = probe_fn
        self.state = InstallState.INITIAL

    def _transition(self, state: InstallState) -> None:
        logger.debug(f"State {self.state.value} -> {state.value}")
        self.state = state

    def _fail(self, status: InstallStatus, message: str, **kwargs) -> InstallResult:
        self._transition(InstallState.FAILED)
        logger.error(message)
        return InstallResult(status=status, message=message, **kwargs)

    def _probe(self, store: TrustStore, validate_chain: bool, strict: bool) -> ProbeResult:
        trust_manager = ChainCapturingTrustManager.for_store(store, self.config.host, validate_chain=validate_chain)
        return self.probe_fn(
            self.config.host,
            self.config.port,
            trust_manager,
            timeout=self.config.timeout,
            strict=strict,
        )

    def run(self) -> InstallResult:
        config = self.config
        host = config.host
        store_path = config.store_path

        if not config.print_only and store_path.is_file():
            if self.confirm_overwrite is None or not self.confirm_overwrite(store_path):
                return InstallResult(
                    status=InstallStatus.ABORTED,
                    message=f"{store_path} exists and was not overwritten.",
                    store_path=store_path,
                )

        logger.info("Loading default CA trust store...")
        default_store = TrustStore.from_defaults()

        first = self._probe(default_store, validate_chain=not config.print_only, strict=False)
        if not first.chain:
            reason = f" ({first.error})" if first.error else ""
            return self._fail(
                InstallStatus.NO_CHAIN,
                f"Could not obtain server certificate chain!{reason}",
                session_info=first.session_info,
            )
        self._transition(InstallState.CHAIN_CAPTURED)

        if config.print_only:
            return InstallResult(
                status=InstallStatus.PRINTED,
                message=f"Server sent {len(first.chain)} certificate(s).",
                chain=first.chain,
                session_info=first.session_info,
            )

        if first.valid:
            return InstallResult(
                status=InstallStatus.ALREADY_TRUSTED,
                message="No errors, certificate is already trusted!",
                chain=first.chain,
                session_info=first.session_info,
            )

        logger.info(f"Server sent {len(first.chain)} certificate(s)...")
        trust_store = default_store.copy()
        added = trust_store.add_entries(first.chain, host)
        for alias, cert in added:
            logger.info(f"Adding certificate to trust store using alias {alias} ({cert.subject})")

        alias_filter = host_alias_pattern(host) if config.exclude_default_cas else None
        candidate = trust_store.to_portable(alias_filter=alias_filter)
        logger.info(f"Default CA trust store is {'excluded' if config.exclude_default_cas else 'included'}.")
        self._transition(InstallState.STORE_ASSEMBLED)

        added_aliases = [alias for alias, _ in added]
        second = self._probe(candidate, validate_chain=True, strict=True)
        if not second.valid:
            return self._fail(
                InstallStatus.REVERIFICATION_FAILED,
                "Something went wrong. Can't validate the cert chain or the server requires client certificates!",
                chain=first.chain,
                session_info=second.session_info or first.session_info,
                added_aliases=added_aliases,
            )
        self._transition(InstallState.VERIFIED)

        logger.info("Certificate is trusted. Saving the trust store...")
        try:
            size = candidate.save(store_path, config.store_password)
        except TrustStoreError as e:
            return self._fail(
                InstallStatus.PERSISTENCE_FAILED,
                f"Could not save trust store to {store_path.absolute()}: {e}",
                chain=first.chain,
                added_aliases=added_aliases,
                store_path=store_path,
            )

        return InstallResult(
            status=InstallStatus.SAVED,
            message=f"PKCS12 truststore saved to {store_path.absolute()}",
            chain=first.chain,
            session_info=second.session_info,
            added_aliases=added_aliases,
            store_path=store_path,
            store_size=size,
            default_cas_included=not config.exclude_default_cas,
        )


def install_certs(
    config: InstallConfig,
    confirm_overwrite: Optional[ConfirmFn] = None,
    probe_fn: ProbeFn = probe,
) -> InstallResult:
    """Run a complete installation and return its outcome."""
    return TrustInstaller(config, confirm_overwrite=confirm_overwrite, probe_fn=probe_fn).run()
