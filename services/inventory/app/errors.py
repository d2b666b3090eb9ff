"""
Inventory Service - 例外

業務ルール違反や対象なしは、コマンド層で success=false の結果に変換する。
呼び出し元へ例外として伝播させることはない。
"""


class InventoryError(Exception):
    """在庫ドメインの例外の基底クラス"""


class NotFoundError(InventoryError):
    """SKU・倉庫・引き当てが存在しない"""


class BusinessRuleViolation(InventoryError):
    """在庫不足、単一倉庫で引き当て不能など"""
