from aiogram.types import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
)


def main_kb() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[
            [KeyboardButton(text="/products"), KeyboardButton(text="/categories")],
            [KeyboardButton(text="/cart"), KeyboardButton(text="/checkout")],
            [KeyboardButton(text="/info"), KeyboardButton(text="/help")],
        ],
        resize_keyboard=True,
    )


def checkout_kb(link: str) -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[[InlineKeyboardButton(text="Send Order via WhatsApp", url=link)]],
    )
