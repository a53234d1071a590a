"""Keyboard package for the 3x-ui account bot."""

from .markups import (
    main_menu_keyboard,
    duration_keyboard,
    registration_decision_keyboard,
    extension_decision_keyboard,
    extend_keyboard,
    clients_list_keyboard,
    client_actions_keyboard,
    confirm_delete_keyboard,
)

__all__ = [
    'main_menu_keyboard',
    'duration_keyboard',
    'registration_decision_keyboard',
    'extension_decision_keyboard',
    'extend_keyboard',
    'clients_list_keyboard',
    'client_actions_keyboard',
    'confirm_delete_keyboard',
]
