"""Menu table and the pure resolver that maps (state, input) to bot actions.

The resolver never touches the store or the gateway; the inbound processor applies
the returned actions in order.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from wabot.services.state_machine import STEP_AWAITING_ORDER_NUMBER, ConversationState, Mode

MAIN_MENU_TEXT = "\n".join(
    [
        "Halo kak! Aku bot CS 😊",
        "",
        "Pilih menu ya:",
        "1️⃣ Cek status pesanan",
        "2️⃣ Jam operasional & alamat",
        "3️⃣ Cara komplain",
        "4️⃣ Promo / info produk",
        "5️⃣ Hubungi CS langsung",
        "",
        "Ketik angka 1-5, atau ketik *0* / *menu* buat lihat menu lagi.",
    ]
)

SHORT_MENU_TEXT = "\n".join(
    [
        "Kak, pilih angka menu ya 😊",
        "1-5 (ketik *0/menu* buat lihat daftar lengkap)",
    ]
)

FALLBACK_TEXT = "\n".join(
    [
        "Aku belum nangkep kak 😅",
        SHORT_MENU_TEXT,
        "",
        "Ketik *0/menu* kalau mau lihat menu lengkap ya 😊",
    ]
)

HANDOFF_TEXT = "Siap kak, aku sambungkan ke CS ya. Setelah ini kakak bisa chat seperti biasa 😊"
HANDOFF_NOTICE_TEMPLATE = "(SYSTEM) User {identity} minta disambungkan ke CS."
ORDER_REF_MAX_LENGTH = 64

MENU_COMMANDS = {"menu", "0"}
_MENU_NUMBER = re.compile(r"^[0-9]+$")


# === ACTIONS ===


@dataclass(frozen=True)
class ReplyText:
    text: str
    meta: dict


@dataclass(frozen=True)
class ForwardToOperator:
    text: str
    meta: dict


@dataclass(frozen=True)
class SetMode:
    mode: Mode


@dataclass(frozen=True)
class SetStep:
    step: Optional[int]


Action = Union[ReplyText, ForwardToOperator, SetMode, SetStep]


@dataclass
class Resolution:
    handled: str
    actions: list[Action] = field(default_factory=list)


# === MENU TABLE ===


class MenuKind(str, Enum):
    REPLY = "reply"
    REPLY_AND_SET_STEP = "reply_and_set_step"
    MODE_SWITCH = "mode_switch"


@dataclass(frozen=True)
class MenuEntry:
    id: int
    title: str
    kind: MenuKind
    reply: str
    step: Optional[int] = None
    mode: Optional[Mode] = None


MENUS: tuple[MenuEntry, ...] = (
    MenuEntry(
        id=1,
        title="Cek status pesanan",
        kind=MenuKind.REPLY_AND_SET_STEP,
        reply="Siap kak. Kirim *nomor order* kamu ya (contoh: ORD12345 / 12345).",
        step=STEP_AWAITING_ORDER_NUMBER,
    ),
    MenuEntry(
        id=2,
        title="Jam operasional & alamat",
        kind=MenuKind.REPLY,
        reply="\n".join(
            [
                "Jam operasional kami:",
                "🕘 Senin–Jumat: 09.00–18.00",
                "🕘 Sabtu: 09.00–15.00",
                "❌ Minggu/libur nasional: tutup",
                "",
                "Alamat:",
                "📍 Jl. Contoh No. 123, Jakarta",
                "",
                "Kalau mau tanya rute, sebutin area kak ya 😊",
            ]
        ),
    ),
    MenuEntry(
        id=3,
        title="Cara komplain",
        kind=MenuKind.REPLY,
        reply="\n".join(
            [
                "Maaf ya kak kalau ada kendala 🙏",
                "Biar cepat, kakak bisa kirim format ini:",
                "- Nama:",
                "- Nomor order:",
                "- Keluhan singkat:",
                "- Foto/video (kalau ada):",
                "",
                "Catatan: jangan kirim OTP/password/nomor kartu ya kak 🙏",
            ]
        ),
    ),
    MenuEntry(
        id=4,
        title="Promo / info produk",
        kind=MenuKind.REPLY,
        reply="\n".join(
            [
                "Untuk promo terbaru, fitur ini masih nyusul ya kak 😄",
                "",
                "Kalau kakak cari produk tertentu, sebutin kebutuhannya aja 😊",
            ]
        ),
    ),
    MenuEntry(
        id=5,
        title="Hubungi CS langsung",
        kind=MenuKind.MODE_SWITCH,
        reply=HANDOFF_TEXT,
        mode=Mode.HUMAN,
    ),
)

_MENUS_BY_ID = {entry.id: entry for entry in MENUS}


def get_menu(menu_id: int) -> Optional[MenuEntry]:
    return _MENUS_BY_ID.get(menu_id)


def parse_menu_number(text: str) -> Optional[int]:
    if not _MENU_NUMBER.match(text):
        return None
    return int(text)


def sanitize_order_ref(text: str) -> str:
    """Strip WhatsApp bold markers and cap the length before interpolation."""
    return text.replace("*", "")[:ORDER_REF_MAX_LENGTH]


def build_order_placeholder(order_ref: str) -> str:
    return "\n".join(
        [
            f"Sip kak, aku coba cek order *{order_ref}* ya...",
            "",
            "Untuk sekarang fitur cek otomatisnya masih disiapin 🙏",
            "Kalau urgent, kakak bisa pilih *5* buat hubungi CS langsung ya 😊",
        ]
    )


def _resolve_menu_entry(entry: MenuEntry, identity: str) -> list[Action]:
    meta = {"kind": "BOT_REPLY", "menu_id": entry.id}
    if entry.kind == MenuKind.REPLY_AND_SET_STEP:
        return [ReplyText(entry.reply, meta), SetStep(entry.step)]
    if entry.kind == MenuKind.MODE_SWITCH:
        # SetMode also clears the step
        return [
            SetMode(entry.mode),
            ReplyText(entry.reply, meta),
            ForwardToOperator(HANDOFF_NOTICE_TEMPLATE.format(identity=identity), {"kind": "BOT_FORWARD"}),
        ]
    return [ReplyText(entry.reply, meta), SetStep(None)]


def resolve(state: ConversationState, identity: str, raw_text: str, lower_text: str) -> Resolution:
    """Decide the bot's next move for a BOT-mode user."""
    if lower_text in MENU_COMMANDS:
        return Resolution("menu", [SetStep(None), ReplyText(MAIN_MENU_TEXT, {"kind": "MENU"})])

    if state == ConversationState.AWAITING_ORDER_NUMBER:
        order_ref = sanitize_order_ref(raw_text)
        return Resolution(
            "order_placeholder",
            [
                ReplyText(build_order_placeholder(order_ref), {"kind": "ORDER_PLACEHOLDER", "order_no": raw_text}),
                SetStep(None),
            ],
        )

    menu_no = parse_menu_number(raw_text)
    if menu_no is not None:
        entry = get_menu(menu_no)
        if entry is None:
            return Resolution(
                "invalid_menu",
                [ReplyText(SHORT_MENU_TEXT, {"kind": "INVALID_MENU_NUMBER", "menu_no": menu_no})],
            )
        return Resolution(f"menu_{menu_no}", _resolve_menu_entry(entry, identity))

    return Resolution("fallback", [ReplyText(FALLBACK_TEXT, {"kind": "FALLBACK"})])
