# Importa todos los modelos para poblar Base.metadata (Alembic / create_all en tests)
from clientdesk.models.auth import User, UserRole  # noqa: F401
from clientdesk.models.purchase import Purchase, PurchaseFeature, FeatureStatus  # noqa: F401
from clientdesk.models.deliverable import (  # noqa: F401
    Lineage, DeliverableVersion, DeliverableStatus, RevisionRequest, RevisionStatus,
)
from clientdesk.models.audit import DeliverableAuditLog, DeliverableAction  # noqa: F401
from clientdesk.models.webhook import WebhookEndpoint  # noqa: F401
