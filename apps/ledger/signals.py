"""
Outbound ledger events.

Both signals are sent from ``transaction.on_commit`` callbacks, so receivers
only ever observe committed ledger state. The ledger itself never sends
notifications; the notification layer subscribes to these.

balance_changed
    Sent once per member whose balance moved.
    kwargs: ``group_id``, ``member_id``, ``new_balance`` (Money),
    ``ledger_version`` (int).

settlement_completed
    Sent when a settlement reaches ``completed``.
    kwargs: ``settlement`` (Settlement instance).
"""

from django.dispatch import Signal


balance_changed = Signal()
settlement_completed = Signal()
