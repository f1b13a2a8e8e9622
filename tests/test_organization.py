from __future__ import annotations

import pytest

from isms_risk_cli.exceptions import PreconditionError
from isms_risk_cli.notifications import Notifier
from isms_risk_cli.organization import OrganizationContext


class TestOrganizationContext:
    def test_require_returns_id(self) -> None:
        assert OrganizationContext("org-1").require() == "org-1"

    @pytest.mark.parametrize("value", [None, ""])
    def test_require_without_organization(self, value) -> None:
        context = OrganizationContext(value)
        assert context.get_organization_id() is None
        with pytest.raises(PreconditionError, match="No organization selected"):
            context.require()


class TestNotifier:
    def test_success_to_stdout(self, capsys) -> None:
        Notifier().success("Rischio salvato con successo", "Ransomware - Critical")
        captured = capsys.readouterr()
        assert captured.out == "Rischio salvato con successo: Ransomware - Critical\n"
        assert captured.err == ""

    def test_error_to_stderr(self, capsys) -> None:
        Notifier().error("Errore nel salvataggio")
        captured = capsys.readouterr()
        assert captured.err == "Errore nel salvataggio\n"
