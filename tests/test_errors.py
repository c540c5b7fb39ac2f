"""Tests for error chaining and the status tree."""

from reshard.errors import (
    CollaboratorError,
    ItemRetriesExhausted,
    PhaseFailure,
    StallTimeout,
    TransportTimeout,
    full_message,
)
from reshard.workflow.status import StatusReport


class TestErrors:

    def test_full_message_walks_cause_chain(self):
        root = ValueError("socket closed")
        inner = CollaboratorError("IMGAPI GET /images", cause=root)
        outer = PhaseFailure("remapping vnodes", cause=inner)

        assert outer.full_message() == "remapping vnodes: IMGAPI GET /images: socket closed"
        assert full_message(root) == "socket closed"

    def test_wrappers_take_kind_of_cause(self):
        stall = StallTimeout("no progress")

        assert PhaseFailure("remapping vnodes", cause=stall).kind == "stall_timeout"
        assert ItemRetriesExhausted("inst-1", 3, stall).kind == "stall_timeout"

    def test_transport_timeout_is_collaborator_error(self):
        err = TransportTimeout("exec timed out")

        assert isinstance(err, CollaboratorError)
        assert err.kind == "transport_timeout"


class TestStatusReport:

    def test_tree_and_callbacks(self):
        changes = []
        root = StatusReport(on_change=lambda: changes.append(1))

        root.update("restarting all %d instances", 2)
        child = root.child()
        child.update("ok")
        root.prop("via instance", "inst-1")

        assert root.lines() == [
            "restarting all 2 instances",
            "  via instance: inst-1",
            "  ok",
        ]
        assert len(changes) == 3

    def test_trunc_and_clear(self):
        root = StatusReport()
        root.update("remapping vnodes")
        root.prop("via instance", "inst-1")
        root.child().update("unpacking")

        root.trunc()
        assert root.children == []
        assert root.message == "remapping vnodes"

        root.clear()
        assert root.snapshot() == {"message": None, "props": {}, "children": []}
