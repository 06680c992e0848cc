import os
from datetime import datetime
from typing import Annotated, Optional, Any, Dict, Literal, List, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
from uuid import UUID

QUERY_DEFAULT_LIMIT = int(os.getenv("QUERY_DEFAULT_LIMIT", "50"))
QUERY_MAX_LIMIT = int(os.getenv("QUERY_MAX_LIMIT", "1000"))

AggregateFunction = Literal["count", "sum", "avg", "min", "max", "array_agg", "string_agg"]


class DataTypeOptions(BaseModel):
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None


class RelationSetting(BaseModel):
    target_table: str
    target_column: str = "id"
    display_column: str = "id"
    relationship_type: Literal["one_to_one", "one_to_many", "many_to_one", "many_to_many"] = "many_to_one"


class ColumnDefinition(BaseModel):
    name: str
    data_type: str
    data_type_options: Optional[DataTypeOptions] = None
    nullable: bool = True
    default: Optional[Any] = None
    view_type: str
    view_editor: str
    view_validation: Optional[Dict[str, Any]] = None
    view_editor_options: Optional[Dict[str, Any]] = None
    is_relation: bool = False
    relation_setting: Optional[RelationSetting] = None
    display_options: Optional[Dict[str, Any]] = None


class SchemaCreate(BaseModel):
    slug: str
    label: str
    description: str
    columns: List[ColumnDefinition]
    is_system: bool = False
    is_relation: bool = False


class SchemaUpdate(BaseModel):
    label: Optional[str] = None
    description: Optional[str] = None
    columns: Optional[List[ColumnDefinition]] = None


class SchemaOut(BaseModel):
    id: UUID
    tenant_id: str
    slug: str
    label: str
    description: str
    columns: List[ColumnDefinition]
    is_system: bool = False
    is_relation: bool = False
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class SchemaMigrationOut(BaseModel):
    version: int
    operation: str
    changes: Dict[str, Any]
    applied_by: str
    applied_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class SortSpec(BaseModel):
    field: str
    direction: Literal["ASC", "DESC"] = "ASC"

    @field_validator("direction", mode="before")
    @classmethod
    def _upper(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class RelationColumnSpec(BaseModel):
    label: str
    local_key: str
    foreign_table: str
    foreign_key: str
    display_columns: List[str]
    filters: Dict[str, Any] = {}


class AggColumnSpec(BaseModel):
    label: str
    local_key: str
    foreign_table: str
    foreign_key: str
    function: AggregateFunction
    function_field: Optional[str] = None
    filters: Dict[str, Any] = {}
    group_by: Optional[List[str]] = None


class _EnrichedRequest(BaseModel):
    """Fields shared by every query that runs the enrichment pipeline."""

    model_config = ConfigDict(populate_by_name=True)
    columns: List[str] = ["*"]
    filters: Dict[str, Any] = {}
    search: Optional[str] = None
    relation_columns: List[RelationColumnSpec] = Field(default_factory=list, alias="relationColumns")
    agg_columns: List[AggColumnSpec] = Field(default_factory=list, alias="aggColumns")
    aggregation_filter: List[str] = Field(default_factory=list, alias="aggregationFilter")


class QueryRequest(_EnrichedRequest):
    sort: List[SortSpec] = []
    limit: int = Field(QUERY_DEFAULT_LIMIT, ge=1, le=QUERY_MAX_LIMIT)
    offset: int = Field(0, ge=0)


class TextFacet(BaseModel):
    type: Literal["text"] = "text"
    values: List[str]
    count: Dict[str, int]


class NumberFacet(BaseModel):
    type: Literal["number"] = "number"
    min: Optional[float] = None
    max: Optional[float] = None
    avg: Optional[float] = None
    count: int = 0


class BooleanFacet(BaseModel):
    type: Literal["boolean"] = "boolean"
    true_count: int = 0
    false_count: int = 0
    null_count: int = 0


class DateFacet(BaseModel):
    type: Literal["date"] = "date"
    min_date: Optional[str] = None
    max_date: Optional[str] = None


class RelationFacetValue(BaseModel):
    id: str
    display: Optional[str] = None
    count: int


class RelationFacet(BaseModel):
    type: Literal["relation"] = "relation"
    values: List[RelationFacetValue]


Facet = Annotated[
    Union[TextFacet, NumberFacet, BooleanFacet, DateFacet, RelationFacet],
    Field(discriminator="type"),
]


class QueryResponse(BaseModel):
    records: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int
    aggregation: Optional[Dict[str, Facet]] = None


class KanbanQueryRequest(_EnrichedRequest):
    status_column: str = Field(alias="statusColumn")
    limit: int = Field(QUERY_DEFAULT_LIMIT, ge=1, le=QUERY_MAX_LIMIT)


class KanbanBoard(BaseModel):
    status: Any
    records: List[Dict[str, Any]]
    count: int


class KanbanResponse(BaseModel):
    boards: List[KanbanBoard]
    aggregation: Optional[Dict[str, Facet]] = None


class TreeQueryRequest(_EnrichedRequest):
    parent_column: str = Field(alias="parentColumn")
    label_column: str = Field(alias="labelColumn")
    root_value: Optional[Any] = Field(None, alias="rootValue")
    max_depth: int = Field(10, ge=1, le=100, alias="maxDepth")
    limit: int = Field(QUERY_MAX_LIMIT, ge=1, le=QUERY_MAX_LIMIT)


class TreeResponse(BaseModel):
    tree: List[Dict[str, Any]]
    aggregation: Optional[Dict[str, Facet]] = None


class DateRange(BaseModel):
    start: datetime
    end: datetime


class GanttQueryRequest(_EnrichedRequest):
    columns: Optional[List[str]] = None
    task_name_column: str = Field(alias="taskNameColumn")
    start_date_column: str = Field(alias="startDateColumn")
    end_date_column: str = Field(alias="endDateColumn")
    progress_column: Optional[str] = Field(None, alias="progressColumn")
    dependency_column: Optional[str] = Field(None, alias="dependencyColumn")
    category_column: Optional[str] = Field(None, alias="categoryColumn")
    assignee_column: Optional[str] = Field(None, alias="assigneeColumn")
    status_column: Optional[str] = Field(None, alias="statusColumn")
    date_range: Optional[DateRange] = Field(None, alias="dateRange")
    limit: int = Field(QUERY_MAX_LIMIT, ge=1, le=QUERY_MAX_LIMIT)


class GanttResponse(BaseModel):
    tasks: List[Dict[str, Any]]
    timeline: Dict[str, Any]
    total: int
    aggregation: Optional[Dict[str, Facet]] = None


class DropdownQueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    label: str
    value: str
    search: Optional[str] = None
    filters: Dict[str, Any] = {}
    sort: List[SortSpec] = []
    limit: int = Field(100, ge=1, le=1000)
    distinct: bool = True
    include_empty: bool = Field(False, alias="includeEmpty")
    group_by: Optional[str] = Field(None, alias="groupBy")


class DropdownOption(BaseModel):
    label: Any
    value: Any
    group: Optional[Any] = None


class DropdownResponse(BaseModel):
    options: List[DropdownOption]
    total: int
    has_more: bool


class BreadcrumbRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    record_id: UUID = Field(alias="recordId")
    label_column: str = Field(alias="labelColumn")
    value_column: str = Field("id", alias="valueColumn")
    parent_column: str = Field(alias="parentColumn")
    direction: Literal["root_to_current", "current_to_root"] = "root_to_current"
    max_depth: int = Field(50, ge=1, le=500, alias="maxDepth")


class BreadcrumbItem(BaseModel):
    label: str
    value: str


class BreadcrumbResponse(BaseModel):
    breadcrumb: List[BreadcrumbItem]
    depth: int


class ChartDataRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    chart_type: Literal["bar", "line", "pie", "scatter"] = Field(alias="chartType")
    x_axis: str = Field(alias="xAxis")
    y_axis: Optional[str] = Field(None, alias="yAxis")
    aggregation: Literal["COUNT", "SUM", "AVG", "MIN", "MAX"] = "COUNT"
    group_by: Optional[str] = Field(None, alias="groupBy")
    filters: Dict[str, Any] = {}
    limit: int = Field(100, ge=1, le=QUERY_MAX_LIMIT)


class ChartDataResponse(BaseModel):
    chart_data: Dict[str, Any]


class AggregationSpec(BaseModel):
    column: str
    function: Literal["COUNT", "SUM", "AVG", "MIN", "MAX"]
    alias: Optional[str] = None


class AggregationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    group_by: List[str] = Field(default_factory=list, alias="groupBy")
    aggregations: List[AggregationSpec]
    filters: Dict[str, Any] = {}
    having: Dict[str, Any] = {}


class AggregationResponse(BaseModel):
    aggregations: List[Dict[str, Any]]


class RecordListResponse(BaseModel):
    records: List[Dict[str, Any]]
    total: int


class BatchInsertRequest(BaseModel):
    records: List[Dict[str, Any]]


class BatchInsertError(BaseModel):
    index: int
    input: Dict[str, Any]
    error: str


class BatchInsertResult(BaseModel):
    records: List[Dict[str, Any]]
    total: int
    errors: List[BatchInsertError]
