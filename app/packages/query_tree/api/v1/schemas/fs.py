"""查询树 - 节点查询与变更请求/响应模型。"""

from typing import List, Optional

from pydantic import BaseModel

from app.packages.query_tree.core.enums import NodeKind


class NodeRecord(BaseModel):
    id: str
    parentId: Optional[str] = None
    kind: NodeKind
    name: str
    sortKey: str
    level: int = 0


class ParentResponse(BaseModel):
    parentId: Optional[str] = None


# 字段可缺省：缺失与空值统一在服务层按 400 处理
class MoveBody(BaseModel):
    id: Optional[str] = None
    newParentId: Optional[str] = None


class RenameBody(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None


class CreateBody(BaseModel):
    parentId: Optional[str] = None
    name: Optional[str] = None


class MoveResponse(BaseModel):
    ok: bool
    oldParentId: Optional[str] = None
    newParentId: str


class RenameResponse(BaseModel):
    ok: bool
    parentId: Optional[str] = None


class CreateResponse(BaseModel):
    ok: bool
    id: str


ChildrenIdsResponse = List[str]
ChildrenWithDataResponse = List[NodeRecord]
