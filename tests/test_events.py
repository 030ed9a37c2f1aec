from __future__ import annotations

import pytest

from propvault.core.property import Property
from propvault.errors import HookError, PropertyNotFoundError
from propvault.events import on


def test_save_hook_runs_after_commit(vault):
    seen = []

    @on.save()
    def record(event):
        # the transaction is visible by the time hooks run
        seen.append((event.kind, [p.id for p in vault.properties()]))

    vault.save_property(Property.new("p", "k", "v"))

    assert seen == [("save", ["p_k"])]


def test_component_filter(vault):
    mail_events = []
    on.save("mail")(mail_events.append)

    vault.save_property(Property.new("p", "a", "1"))
    vault.save_property(Property.new("p", "m", "1", component="mail"))

    assert len(mail_events) == 1
    assert mail_events[0].components == {"mail"}
    assert mail_events[0].entries[0].action == "CREATE"


def test_restore_and_import_hooks(vault):
    kinds = []
    on.restore()(lambda e: kinds.append(e.kind))
    on.import_snapshot()(lambda e: kinds.append(e.kind))

    entry = vault.save_property(Property.new("p", "k", "v"))
    blob = vault.export_snapshot()
    vault.restore(entry.id)
    vault.import_snapshot(blob)

    assert kinds == ["restore", "import_snapshot"]


def test_failed_operation_emits_nothing(vault):
    events = []
    on.save()(events.append)

    with pytest.raises(PropertyNotFoundError):
        vault.delete_property("p_missing")

    assert events == []


def test_failing_hook_runs_after_commit_and_does_not_stop_others(vault):
    calls = []

    @on.save()
    def broken(event):
        raise RuntimeError("webhook down")

    on.save()(lambda e: calls.append(e.kind))

    with pytest.raises(HookError) as excinfo:
        vault.save_property(Property.new("p", "k", "v"))

    assert calls == ["save"]
    assert excinfo.value.kind == "save"
    assert isinstance(excinfo.value.failures[0], RuntimeError)
    # the save itself was committed and audited
    assert vault.store.get_property("p_k").value == "v"
    assert [e.action for e in vault.audit_log()] == ["CREATE"]
