from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal


DataSourceKey = Literal["localSql", "postgres", "mysql", "firebase"]
LlmProviderName = Literal["OPENAI", "GEMINI"]
AccountType = Literal["INDIVIDUAL", "BUSINESS"]
LicenseTier = Literal["FREE", "INDIVIDUAL", "BUSINESS"]
PodRole = Literal["viewer", "editor", "admin"]
ChartHint = Literal["line", "bar", "pie"]
Aggregation = Literal["count", "sum", "avg", "min", "max"]
FilterOp = Literal["=", ">", "<", ">=", "<=", "!=", "contains", "in", "between"]
TimeGrain = Literal["day", "week", "month", "quarter", "year"]


class HealthResponse(BaseModel):
    status: str = "ok"
    app: str
    env: str


# --- Metric query model ---
class DashboardFilter(BaseModel):
    column: str
    op: FilterOp
    value: Optional[str] = ""
    valueTo: Optional[str] = None
    values: Optional[List[str]] = None


class DashboardJoin(BaseModel):
    table: str
    onLeft: str
    onRight: str
    type: Optional[Literal["inner", "left", "right"]] = None


class MetricQuery(BaseModel):
    table: str
    metricColumn: str = ""
    metricColumn2: Optional[str] = None
    aggregation: Aggregation
    aggregation2: Optional[Aggregation] = None
    groupBy: Optional[str] = None
    timeGrain: Optional[TimeGrain] = None
    orderBy: Optional[str] = None
    orderDirection: Optional[Literal["asc", "desc"]] = None
    joins: List[DashboardJoin] = Field(default_factory=list)
    filters: List[DashboardFilter] = Field(default_factory=list)
    limit: Optional[int] = None


class DashboardWidget(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    chartType: ChartHint = "bar"
    query: MetricQuery
    showInChat: bool = False


class DashboardCreate(BaseModel):
    name: str
    description: Optional[str] = None


class DashboardUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    widgets: Optional[List[DashboardWidget]] = None


class DashboardOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    widgets: List[DashboardWidget] = Field(default_factory=list)
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class WidgetRunRequest(BaseModel):
    widget: DashboardWidget


class WidgetSqlRequest(BaseModel):
    query: MetricQuery


class WidgetSqlResponse(BaseModel):
    dialect: str
    sql: str


class TrendItem(BaseModel):
    widgetId: str
    title: str
    chartType: str
    data: "QueryResult"


class TrendsResponse(BaseModel):
    widgets: List[TrendItem]


# --- Query results ---
class QueryResult(BaseModel):
    columns: List[str] = Field(default_factory=list)
    rows: List[Dict[str, Any]] = Field(default_factory=list)


# --- Knowledge base ---
class TableDictionaryItem(BaseModel):
    tableName: str = ""
    description: str = ""


class ColumnDictionaryItem(BaseModel):
    tableName: str = ""
    columnName: str = ""
    dataType: str = ""
    description: str = ""
    filterable: bool = False


class KnowledgeParameters(BaseModel):
    dateHandlingRules: str = ""
    bestQueryPractices: str = ""
    businessContext: str = ""
    sampleQueries: List[str] = Field(default_factory=list)


class MetricDefinition(BaseModel):
    name: str = ""
    definition: str = ""
    sampleQuery: str = ""
    defaultFilters: str = ""


class KnowledgeBase(BaseModel):
    tableDictionary: List[TableDictionaryItem] = Field(default_factory=list)
    columnDictionary: List[ColumnDictionaryItem] = Field(default_factory=list)
    parameters: KnowledgeParameters = Field(default_factory=KnowledgeParameters)
    metrics: List[MetricDefinition] = Field(default_factory=list)


class KnowledgeQuality(BaseModel):
    score: int
    notes: str
    updatedAt: Optional[str] = None
    evaluatedBy: Literal["system", "admin"] = "admin"


class QualityOut(BaseModel):
    quality: Optional[KnowledgeQuality] = None
    chatEnabled: bool
    chatOverride: bool
    threshold: int


class ChatOverrideRequest(BaseModel):
    enabled: bool = False


class ChatOverrideOut(BaseModel):
    chatEnabled: bool
    chatOverride: bool


class KnowledgeBankCreate(BaseModel):
    title: str
    date: str
    highlights: str
    lowlights: str
    docText: Optional[str] = None


class KnowledgeBankEntryOut(KnowledgeBankCreate):
    id: str
    createdAt: Optional[str] = None
    createdBy: Optional[str] = None


# --- Data sources ---
class SqlSource(BaseModel):
    connectionString: str = ""
    updatedAt: Optional[str] = None


class FirebaseSource(BaseModel):
    projectId: str = ""
    serviceAccountJson: str = ""
    updatedAt: Optional[str] = None


class DataSources(BaseModel):
    localSql: SqlSource = Field(default_factory=SqlSource)
    postgres: SqlSource = Field(default_factory=SqlSource)
    mysql: SqlSource = Field(default_factory=SqlSource)
    firebase: FirebaseSource = Field(default_factory=FirebaseSource)


class SqlSourceUpdate(BaseModel):
    connectionString: Optional[str] = None


class FirebaseSourceUpdate(BaseModel):
    projectId: Optional[str] = None
    serviceAccountJson: Optional[str] = None


class DataSourcesUpdate(BaseModel):
    localSql: Optional[SqlSourceUpdate] = None
    postgres: Optional[SqlSourceUpdate] = None
    mysql: Optional[SqlSourceUpdate] = None
    firebase: Optional[FirebaseSourceUpdate] = None


class TestConnectionRequest(BaseModel):
    connectionString: Optional[str] = None
    projectId: Optional[str] = None
    serviceAccountJson: Optional[str] = None


class TestConnectionResponse(BaseModel):
    ok: bool
    error: Optional[str] = None


# --- Orgs, users, pods ---
class OrgCreate(BaseModel):
    name: str
    accountType: AccountType = "INDIVIDUAL"
    adminName: str
    adminEmail: str


class TokenBucketOut(BaseModel):
    limit: int
    used: int
    resetAt: Optional[str] = None


class OrgOut(BaseModel):
    id: str
    name: str
    accountType: str
    licenseTier: LicenseTier
    tokenBucket: TokenBucketOut


class ProfileOut(BaseModel):
    id: str
    orgId: str
    name: str
    email: str
    role: str
    llmProvider: str
    hasKey: bool = False
    activeDataSource: str


class OrgCreateResponse(BaseModel):
    org: OrgOut
    admin: ProfileOut


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    llmProvider: Optional[LlmProviderName] = None
    apiKey: Optional[str] = None
    activeDataSource: Optional[DataSourceKey] = None


class PodCreate(BaseModel):
    name: str


class PodSummary(BaseModel):
    id: str
    name: str
    createdAt: Optional[str] = None
    role: Optional[PodRole] = None


class PodListResponse(BaseModel):
    pods: List[PodSummary]
    licenseType: str


class PodDetail(PodSummary):
    knowledge: KnowledgeBase
    knowledgeQuality: Optional[KnowledgeQuality] = None
    chatEnabled: bool = True
    chatOverride: bool = False
    dashboards: List[DashboardOut] = Field(default_factory=list)


# --- Chat ---
class ChatRequest(BaseModel):
    message: str
    conversationId: Optional[str] = None
    podId: Optional[str] = None


class ChatResponse(BaseModel):
    conversationId: str
    messageId: str
    sql: str
    analysis: str
    chartHint: ChartHint
    columns: List[str]
    rows: List[Dict[str, Any]]


class ChatMessageOut(BaseModel):
    id: str
    role: Literal["user", "assistant"]
    content: str
    createdAt: Optional[str] = None


class ConversationOut(BaseModel):
    id: str
    podId: Optional[str] = None
    messages: List[ChatMessageOut] = Field(default_factory=list)
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class FeedbackCreate(BaseModel):
    conversationId: str
    messageId: str
    rating: Literal["up", "down"]
    comment: Optional[str] = None


class SupportMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ConciergeRequest(BaseModel):
    message: str
    history: List[SupportMessage] = Field(default_factory=list)


class ConciergeResponse(BaseModel):
    reply: str


# --- Insights feed ---
class InsightCreate(BaseModel):
    content: str = ""


class InsightComment(BaseModel):
    id: str
    userId: str
    content: str
    createdAt: Optional[str] = None


class InsightOut(BaseModel):
    id: str
    userId: str
    content: str
    createdAt: Optional[str] = None
    likes: List[str] = Field(default_factory=list)
    comments: List[InsightComment] = Field(default_factory=list)


TrendItem.model_rebuild()
