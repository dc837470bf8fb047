from pydantic import BaseModel
from typing import Optional, List, Any

class DateRange(BaseModel):
    startDate: Optional[str] = None
    endDate: Optional[str] = None

class Subscription(BaseModel):
    subscriptionId: str
    displayName: Optional[str] = None

class Column(BaseModel):
    name: str
    type: str

class CostRow(BaseModel):
    cost: Any = None
    meterCategory: Optional[str] = None
    meterSubCategory: Optional[str] = None
    subscriptionId: str
    resourceGroup: str = "Unknown"
    subscriptionName: Optional[str] = None

    def as_row(self) -> List[Any]:
        return [self.cost, self.meterCategory, self.meterSubCategory,
                self.subscriptionId, self.resourceGroup, self.subscriptionName]

class CostProperties(BaseModel):
    rows: List[List[Any]]
    columns: List[Column]

class CostResponse(BaseModel):
    properties: CostProperties
    subscriptions: List[Subscription]

class TopResource(BaseModel):
    subscriptionId: str
    subscriptionName: Optional[str] = None
    resourceName: str
    resourceId: Optional[str] = None
    meterSubCategory: Optional[str] = None
    cost: float

class DefenderPlan(BaseModel):
    subscriptionId: str
    subscriptionName: Optional[str] = None
    planName: Optional[str] = None
    pricingTier: str

class ErrorResponse(BaseModel):
    error: str

COST_COLUMNS = [
    Column(name="Cost", type="Number"),
    Column(name="MeterCategory", type="String"),
    Column(name="MeterSubCategory", type="String"),
    Column(name="SubscriptionId", type="String"),
    Column(name="ResourceGroup", type="String"),
    Column(name="SubscriptionName", type="String"),
]
