"""Deployment model.

One row per uploaded bundle. Files live in object storage under
sites/<site_id>/deployments/<deployment_id>/; the site points at the
deployment it currently serves via sites.active_deployment_id.
"""

import uuid

from pagehaven.extensions import db


class Deployment(db.Model):
    __tablename__ = "deployments"

    STATUSES = ["pending", "processing", "live", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    site_id = db.Column(
        db.String(36),
        db.ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    storage_path = db.Column(db.String(500), nullable=False)
    status = db.Column(
        db.String(20), default="pending", nullable=False
    )  # pending | processing | live | failed
    file_count = db.Column(db.Integer, default=0)
    total_size = db.Column(db.Integer, default=0)  # bytes
    commit_hash = db.Column(db.String(64), nullable=True)
    commit_message = db.Column(db.Text, nullable=True)
    deployed_by = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Relationships ---
    site = db.relationship(
        "Site", foreign_keys=[site_id], back_populates="deployments"
    )

    def __repr__(self):
        return f"<Deployment {self.id[:8]} site={self.site_id} ({self.status})>"
