"""アプリケーション共通の例外定義"""


class StorebotError(Exception):
    """storebot の基底例外"""


class TenantNotFoundError(StorebotError):
    """テナント（ストア）が未登録"""


class ModelNotConfiguredError(StorebotError):
    """言語モデルのAPIキーが未設定"""


class ModelCallError(StorebotError):
    """言語モデル呼び出しの失敗（リトライ対象外）"""


class ModelRateLimitError(ModelCallError):
    """レート制限。retry_after はプロバイダーが示した待機秒数（無ければNone）"""

    def __init__(self, message: str = "rate limited", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class CatalogNotConfiguredError(StorebotError):
    """テナントのカタログAPIトークンが未設定"""


class CatalogAPIError(StorebotError):
    """外部カタログAPIのエラー（ジョブ全体を失敗させる）"""


class CatalogPermissionError(CatalogAPIError):
    """このカテゴリへのアクセス権がない（カテゴリ単位でスキップする）"""


class SyncAlreadyRunningError(StorebotError):
    """同一テナントで同期ジョブが実行中"""

    def __init__(self, job_id: int):
        super().__init__(f"sync job {job_id} is already running")
        self.job_id = job_id
