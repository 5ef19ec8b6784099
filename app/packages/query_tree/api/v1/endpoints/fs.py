"""查询树节点路由。

查询类接口（children / children-with-data / item / parent）保持轻量，直接返回数据本身；
变更类接口（move / rename / create-*）全有或全无，失败时返回 400/404 的统一错误结构。
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.packages.query_tree.api.v1.schemas.fs import (
    ChildrenIdsResponse,
    ChildrenWithDataResponse,
    CreateBody,
    CreateResponse,
    MoveBody,
    MoveResponse,
    NodeRecord,
    ParentResponse,
    RenameBody,
    RenameResponse,
)
from app.packages.query_tree.core.dependencies import get_mutation_service, get_query_service
from app.packages.query_tree.core.enums import NodeKind
from app.packages.query_tree.core.exceptions import BadRequestError
from app.packages.query_tree.services.tree_mutation_service import TreeMutationService
from app.packages.query_tree.services.tree_query_service import TreeQueryService

router = APIRouter(prefix="/fs", tags=["fs"])


@router.get("/children", response_model=ChildrenIdsResponse)
def list_children(
    id: Optional[str] = Query(None, description="文件夹 ID，缺省为根节点"),
    service: TreeQueryService = Depends(get_query_service),
):
    return service.get_children_ids(id)


@router.get("/children-with-data", response_model=ChildrenWithDataResponse)
def list_children_with_data(
    id: Optional[str] = Query(None, description="文件夹 ID，缺省为根节点"),
    service: TreeQueryService = Depends(get_query_service),
):
    return service.get_children_with_data(id)


@router.get("/item", response_model=NodeRecord)
def get_item(
    id: Optional[str] = Query(None, description="节点 ID，缺省为根节点"),
    service: TreeQueryService = Depends(get_query_service),
):
    return service.get_item(id)


@router.get("/parent", response_model=ParentResponse)
def get_parent(
    id: Optional[str] = Query(None),
    service: TreeQueryService = Depends(get_query_service),
):
    if not id:
        raise BadRequestError("Missing id")
    return service.get_parent_id(id)


@router.post("/move", response_model=MoveResponse)
def move_node(body: MoveBody, service: TreeMutationService = Depends(get_mutation_service)):
    return service.move_node(body.id, body.newParentId)


@router.post("/rename", response_model=RenameResponse)
def rename_node(body: RenameBody, service: TreeMutationService = Depends(get_mutation_service)):
    return service.rename_node(body.id, body.name)


@router.post("/create-folder", response_model=CreateResponse)
def create_folder(body: CreateBody, service: TreeMutationService = Depends(get_mutation_service)):
    return service.create_node(body.parentId, body.name, NodeKind.FOLDER)


@router.post("/create-query", response_model=CreateResponse)
def create_query(body: CreateBody, service: TreeMutationService = Depends(get_mutation_service)):
    return service.create_node(body.parentId, body.name, NodeKind.FILE)
