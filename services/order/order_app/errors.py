"""
Order Service — ドメイン例外

コマンド/クエリ層がビジネスルール違反時に送出し、
main.py の例外ハンドラが HTTP レスポンスに変換する。
どの例外もユーザーが次に何をすべきかが分かるメッセージを持つ。
"""


class OrderServiceError(Exception):
    """すべてのドメイン例外の基底クラス"""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(OrderServiceError):
    """入力値が不正（フィールド単位のメッセージ付き）"""
    status_code = 400


class NotFoundError(OrderServiceError):
    """参照された注文・商品・ユーザーが存在しない"""
    status_code = 404


class TransitionRejected(OrderServiceError):
    """ライフサイクルエンジンが遷移を拒否した"""
    status_code = 400


class EditForbidden(OrderServiceError):
    """編集可否ガードが編集を拒否した"""
    status_code = 403


class ConflictError(OrderServiceError):
    """同時更新の競合、または注文番号の採番リトライ上限到達"""
    status_code = 409


class DependencyError(OrderServiceError):
    """カタログやストアが利用できない"""
    status_code = 503


class AuthenticationError(OrderServiceError):
    status_code = 401


class PermissionDenied(OrderServiceError):
    status_code = 403
