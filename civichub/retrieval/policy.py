"""Decide whether a citizen message is worth a knowledge search."""

from __future__ import annotations

import re

_SKIP_PATTERNS = (
    re.compile(r"^(halo|hai|hi|hello|selamat\s+(pagi|siang|sore|malam)|assalamualaikum|permisi)"),
    re.compile(r"^(ya|tidak|iya|ok|oke|baik|terima\s*kasih|makasih|siap)"),
    re.compile(r"^(benar|betul|setuju|lanjut|sudah|belum|bisa|boleh)"),
    re.compile(r"^(siapa\s+(nama\s+)?kamu|kamu\s+siapa)"),
)

_REQUIRE_PATTERNS = (
    re.compile(r"bagaimana|gimana|cara|langkah|prosedur|proses"),
    re.compile(r"apa\s+(itu|saja|syarat)|dimana|kapan|berapa|biaya|tarif|harga"),
    re.compile(r"layanan|pelayanan|pendaftaran|pengajuan|permohonan"),
    re.compile(r"surat|dokumen|berkas|formulir|persyaratan"),
    re.compile(r"alamat|lokasi|jam\s+(buka|kerja|operasional)"),
)


def classify_query(text: str) -> str:
    """Return ``skip``, ``required`` or ``optional``."""

    normalized = (text or "").strip().lower()
    if not normalized:
        return "skip"
    if len(normalized.split()) < 3 and any(p.search(normalized) for p in _SKIP_PATTERNS):
        return "skip"
    if any(p.search(normalized) for p in _REQUIRE_PATTERNS):
        return "required"
    if any(p.search(normalized) for p in _SKIP_PATTERNS):
        return "skip"
    return "optional"


def should_retrieve(text: str) -> bool:
    return classify_query(text) != "skip"
