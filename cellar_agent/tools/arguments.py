"""工具参数模型。

每个工具一个 pydantic 变体，以 `tool` 字段作为标签，组成按工具名区分的联合类型。
ToolRegistry 在调用处理函数之前完成校验，处理函数拿到的永远是已校验的变体。
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from cellar_agent.domain.wine import InventoryQuery


WineType = Literal["Red", "White", "Rosé", "Sparkling", "Dessert", "Fortified"]


class QueryInventoryArgs(InventoryQuery):
    model_config = ConfigDict(extra="ignore")

    tool: Literal["query_inventory"] = "query_inventory"


class StageWineArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tool: Literal["stage_wine"] = "stage_wine"
    producer: str = Field(min_length=1)
    name: Optional[str] = None
    vintage: Optional[int] = None
    type: Optional[WineType] = None
    cepage: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    drink_from: Optional[int] = None
    drink_until: Optional[int] = None
    maturity: Optional[Literal["Hold", "Drink Now", "Past Peak"]] = None
    tasting_notes: Optional[str] = None


class CommitWineArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tool: Literal["commit_wine"] = "commit_wine"
    price: float = Field(ge=0)
    quantity: Optional[int] = Field(default=None, ge=1)


ToolArguments = Annotated[
    Union[QueryInventoryArgs, StageWineArgs, CommitWineArgs],
    Field(discriminator="tool"),
]


# 三个酒窖工具共用：按工具名注入 `tool` 标签后选择变体
TOOL_ARGUMENTS = TypeAdapter(ToolArguments)
