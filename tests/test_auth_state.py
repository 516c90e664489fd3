import io

from app.services.auth_state import AuthState, AuthStateTracker
from app.types.schedule_contract import CredentialArtifact, GatewayEvent
from app.utils import qr


def test_tracker_follows_session_events(fake_session):
    tracker = AuthStateTracker().attach(fake_session)
    assert tracker.state is AuthState.UNAUTHENTICATED
    assert tracker.artifact is None

    fake_session.emit_credential(CredentialArtifact(type="qr", value="first"))
    assert tracker.state is AuthState.AWAITING_SCAN
    assert tracker.artifact.value == "first"

    fake_session.emit_credential(CredentialArtifact(type="qr", value="second"))
    assert tracker.artifact.value == "second"

    fake_session.emit_ready()
    assert tracker.is_ready
    assert tracker.artifact is None


def test_new_credential_after_ready_reopens_scan(fake_session):
    tracker = AuthStateTracker().attach(fake_session)
    fake_session.emit_ready()

    fake_session.emit_credential(CredentialArtifact(type="pairing_code", value="ABCD-EFGH"))

    snap = tracker.snapshot()
    assert snap.state is AuthState.AWAITING_SCAN
    assert snap.artifact.type == "pairing_code"


def test_disconnect_clears_state(fake_session):
    tracker = AuthStateTracker().attach(fake_session)
    fake_session.emit_ready()

    fake_session.emit_disconnected()

    assert tracker.state is AuthState.UNAUTHENTICATED
    assert not tracker.is_ready


def test_gateway_events_drive_tracker(fake_session):
    tracker = AuthStateTracker().attach(fake_session)

    fake_session.handle_event(GatewayEvent(event="qr", data={"value": "2@xyz"}))
    assert tracker.artifact.value == "2@xyz"

    fake_session.handle_event(GatewayEvent(event="ready"))
    assert tracker.state is AuthState.READY


def test_qr_printed_for_terminal():
    out = io.StringIO()
    qr.print_credential(CredentialArtifact(type="qr", value="2@xyz"), out=out)
    assert out.getvalue().strip()


def test_qr_svg_rendering():
    svg = qr.render_svg("2@xyz")
    assert b"<svg" in svg
