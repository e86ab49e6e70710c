"""Citizen-facing canned replies (Indonesian)."""

from __future__ import annotations

from ..guard.models import Decision, DecisionKind, RejectReason

TIMEOUT = "Maaf Kak, prosesnya agak lama nih. Coba kirim ulang pesannya ya 🙏"
RATE_LIMIT = "Maaf Kak, sistem sedang sibuk. Coba lagi dalam 1-2 menit ya."
SERVICE_DOWN = "Mohon maaf Kak, layanan sedang maintenance. Silakan coba lagi nanti 🙏"
GENERIC = "Maaf Kak, ada kendala teknis. Silakan coba lagi sebentar lagi ya 🙏"

SLOW_DOWN = "Mohon tunggu {seconds} detik sebelum mengirim pesan baru."
SPAM_BANNED = "Pesan Anda terdeteksi berulang. Mohon tunggu sebentar sebelum mengirim pesan lagi."
BLACKLISTED = "Maaf, nomor Anda tidak dapat menggunakan layanan ini. Silakan hubungi kantor desa."
AI_DISABLED = "Terima kasih, pesan Anda sudah kami terima. Petugas kami akan segera membalas."

_BY_KIND = {
    "timeout": TIMEOUT,
    "rate_limit": RATE_LIMIT,
    "service_down": SERVICE_DOWN,
}


def model_failure_message(kind: str) -> str:
    return _BY_KIND.get(kind, GENERIC)


def guard_warning(decision: Decision) -> str:
    """Return the reply for a rejected message in ``warn`` mode.

    Superseded duplicates never get a reply: answering them would defeat the
    point of dropping them.
    """

    if decision.kind is DecisionKind.BLACKLISTED:
        return BLACKLISTED
    if decision.reason is RejectReason.SUPERSEDED:
        return ""
    if decision.reason is RejectReason.SPAM_BANNED:
        return SPAM_BANNED
    seconds = max(1, -(-(decision.retry_after_ms or 1000) // 1000))
    return SLOW_DOWN.format(seconds=seconds)
