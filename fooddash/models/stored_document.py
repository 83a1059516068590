from fooddash import db
from datetime import datetime

class StoredDocument(db.Model):
    """Durable JSON document keyed by (namespace, key)"""
    __tablename__ = 'stored_documents'
    
    id = db.Column(db.Integer, primary_key=True)
    namespace = db.Column(db.String(100), nullable=False)
    key = db.Column(db.String(200), nullable=False)
    value = db.Column(db.Text, nullable=False)  # JSON
    
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    __table_args__ = (db.UniqueConstraint('namespace', 'key', name='unique_namespace_key'),)
