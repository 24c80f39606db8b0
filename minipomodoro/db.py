from minipomodoro.store import UpgradeTransaction

STORE_NAME = "miniPomodoro"

COUNTDOWNS = "countdownTimers"

LISTS = "listItems"


# Migration steps use literal names: each one describes the store as it was
# when the step was written.

def _create_countdowns(tx: UpgradeTransaction) -> None:
    tx.create_collection("countdown-timers", key_path="id")


def _rename_countdowns_add_list_items(tx: UpgradeTransaction) -> None:
    tx.rename_collection("countdown-timers", "countdownTimers")
    tx.create_collection("listItems", key_path="id", auto_increment=True)
    tx.create_index("listItems", "listIdIndex", key_path="listId")


def _store_whole_lists(tx: UpgradeTransaction) -> None:
    # One {id, items} record per list instead of one row per item.
    tx.delete_collection("listItems")
    tx.create_collection("listItems", key_path="id")


MIGRATIONS = (
    _create_countdowns,                 # 0 -> 1
    _rename_countdowns_add_list_items,  # 1 -> 2
    _store_whole_lists,                 # 2 -> 3
)
SCHEMA_VERSION = len(MIGRATIONS)
