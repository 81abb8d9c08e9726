"""Time-log data provider backed by a TFS / Azure DevOps server."""

from __future__ import annotations

import logging

from timelog_provider.core.data_models import EvaluationContext, TimeLogRecord
from timelog_provider.core.errors import ConfigurationError
from timelog_provider.core.reconciler import PostProcessHook, WorkItemReconciler
from timelog_provider.core.record_factory import FieldCopyRecordFactory, RecordFactory
from timelog_provider.core.tfs_client import TfsClient, TfsSession
from timelog_provider.services.config_manager import ConfigManager
from timelog_provider.services.credential_manager import CredentialManager

logger = logging.getLogger(__name__)


class TfsTimeLogDataProvider:
    """Entry point used by the evaluation pipeline.

    Every :meth:`load_data` call opens its own session, so one provider
    may serve several threads.
    """

    def __init__(
        self,
        connection_string: str,
        username: str,
        password: str,
        *,
        client: TfsClient | None = None,
        factory: RecordFactory | None = None,
        post_process: PostProcessHook | None = None,
    ) -> None:
        self.connection_string = connection_string
        self.username = username
        self.password = password
        self._client = client or TfsClient()
        self._reconciler = WorkItemReconciler(
            self._client,
            self._open_session,
            factory=factory,
            post_process=post_process,
        )

    @classmethod
    def from_config(
        cls,
        config: ConfigManager,
        credentials: CredentialManager | None = None,
        *,
        factory: RecordFactory | None = None,
        post_process: PostProcessHook | None = None,
    ) -> TfsTimeLogDataProvider:
        """Build a provider from stored configuration and keyring credentials.

        Raises:
            ConfigurationError: No server URL, no stored password, or
                malformed settings.
        """
        credentials = credentials or CredentialManager(config)
        if not credentials.is_configured:
            raise ConfigurationError("No server URL configured; log in first")
        password = credentials.get_password()
        if password is None:
            raise ConfigurationError(f"No stored password for {credentials.server_url}")

        client = TfsClient(**config.client_options())
        custom_fields = config.custom_fields
        if factory is None and custom_fields:
            factory = FieldCopyRecordFactory(custom_fields)

        return cls(
            credentials.server_url,
            credentials.username,
            password,
            client=client,
            factory=factory,
            post_process=post_process,
        )

    def load_data(self, context: EvaluationContext) -> list[TimeLogRecord]:
        """Load the reconciled records for ``context.iteration_path``."""
        return self._reconciler.load_data(context.iteration_path, context.project_name)

    def _open_session(self) -> TfsSession:
        return self._client.connect(self.connection_string, self.username, self.password)
