# propauth/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# -------------------- Permission checks --------------------

class AccessCheckIn(BaseModel):
    resource_type: str
    action: str
    resource_id: Optional[str] = None


class AccessCheckOut(BaseModel):
    allowed: bool


class AccessibleProperties(BaseModel):
    property_ids: List[str]


# -------------------- Resource grants --------------------

class GrantIn(BaseModel):
    team_id: str
    resource_type: str
    resource_id: str
    action: str


class GrantOut(BaseModel):
    team_id: str
    resource_type: str
    resource_id: str
    action: str
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class RevokeOut(BaseModel):
    removed: bool


# -------------------- Teams --------------------

class TeamOut(BaseModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class TeamUpdateIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class AssignPropertiesIn(BaseModel):
    property_ids: List[str] = Field(default_factory=list)


class TeamPropertiesOut(BaseModel):
    team_id: str
    property_ids: List[str]


# -------------------- Subscription --------------------

class SubscriptionLimitsOut(BaseModel):
    organization_id: str
    subscription_status: str
    active_members: int
    pending_invitations: int
    max_users: int
    properties: int
    max_properties: int
    can_invite_users: bool
    can_add_property: bool


class SubscriptionFeaturesOut(BaseModel):
    max_properties: int
    max_users: int
    advanced_reporting: bool
    document_storage: bool


class SubscriptionStatusOut(BaseModel):
    on_trial: bool
    trial_days_remaining: int
    subscription_active: bool
    subscription_plan: str
    features: SubscriptionFeaturesOut


# -------------------- Audit --------------------

class AuditEventOut(BaseModel):
    id: int
    actor_user_id: Optional[str] = None
    action: str
    entity_type: str
    entity_id: str
    before_json: Optional[str] = None
    after_json: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
