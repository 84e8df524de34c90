"""
backend/routes_projects.py

Project, membership and task endpoints.

Security guarantees:
- All endpoints require authentication (require_auth_context)
- The acting principal comes from the token only, never from the body
- Every operation is authorized by the Permission Evaluator inside the
  service call; project-scoped reads are also pre-checked by
  require_project_permission so "no role" is a 403, not an empty list
- Core errors (Forbidden/NotFound/Conflict/Invalid) are mapped to HTTP
  status codes by the handler registered in main.py
"""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, Response

try:
    from backend import db, memberships, projects, tasks
    from backend.auth_context import AuthContext, require_auth_context
    from backend.authz import permission_snapshot
    from backend.dependencies import require_project_permission
    from backend.rbac import ProjectAction, resolve_role
    from backend.schemas import (
        MemberAddRequest,
        MemberResponse,
        MemberRoleUpdateRequest,
        PermissionSnapshotResponse,
        ProjectCreateRequest,
        ProjectResponse,
        ProjectUpdateRequest,
        TaskCreateRequest,
        TaskResponse,
        TaskUpdateRequest,
    )
except ModuleNotFoundError:
    import db
    import memberships
    import projects
    import tasks
    from auth_context import AuthContext, require_auth_context
    from authz import permission_snapshot
    from dependencies import require_project_permission
    from rbac import ProjectAction, resolve_role
    from schemas import (
        MemberAddRequest,
        MemberResponse,
        MemberRoleUpdateRequest,
        PermissionSnapshotResponse,
        ProjectCreateRequest,
        ProjectResponse,
        ProjectUpdateRequest,
        TaskCreateRequest,
        TaskResponse,
        TaskUpdateRequest,
    )


router = APIRouter(
    prefix="/projects",
    tags=["projects"],
)

task_router = APIRouter(
    prefix="/tasks",
    tags=["tasks"],
)


# ---------------------------------------------------------
# Projects
# ---------------------------------------------------------
@router.post("", response_model=ProjectResponse, status_code=201)
def create_project(request: ProjectCreateRequest, ctx: AuthContext = Depends(require_auth_context)):
    """Create a project. The caller becomes its owner."""
    project = projects.create_project(ctx.principal_id, ctx.email, request.name, request.description)
    return ProjectResponse.from_project(project)


@router.get("", response_model=List[ProjectResponse])
def list_projects(
    include_archived: bool = Query(True),
    ctx: AuthContext = Depends(require_auth_context),
):
    return [
        ProjectResponse.from_project(p)
        for p in projects.list_projects(ctx.principal_id, include_archived=include_archived)
    ]


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(project_id: str, ctx: AuthContext = Depends(require_auth_context)):
    return ProjectResponse.from_project(projects.get_project(project_id, ctx.principal_id))


@router.patch("/{project_id}", response_model=ProjectResponse)
def update_project(project_id: str, request: ProjectUpdateRequest, ctx: AuthContext = Depends(require_auth_context)):
    project = projects.update_project(project_id, ctx.principal_id, name=request.name, description=request.description)
    return ProjectResponse.from_project(project)


@router.delete("/{project_id}", status_code=204)
def delete_project(project_id: str, ctx: AuthContext = Depends(require_auth_context)):
    projects.delete_project(project_id, ctx.principal_id)
    return Response(status_code=204)


@router.post("/{project_id}/archive", response_model=ProjectResponse)
def archive_project(project_id: str, ctx: AuthContext = Depends(require_auth_context)):
    return ProjectResponse.from_project(projects.set_archived(project_id, ctx.principal_id, True))


@router.post("/{project_id}/restore", response_model=ProjectResponse)
def restore_project(project_id: str, ctx: AuthContext = Depends(require_auth_context)):
    return ProjectResponse.from_project(projects.set_archived(project_id, ctx.principal_id, False))


@router.get(
    "/{project_id}/permissions",
    response_model=PermissionSnapshotResponse,
    dependencies=[Depends(require_project_permission(ProjectAction.VIEW))],
)
def get_permissions(project_id: str, ctx: AuthContext = Depends(require_auth_context)):
    """
    Advisory permission snapshot for UI hints (hide buttons the caller
    can't use). Not an authorization decision.
    """
    with db.get_db_connection() as conn:
        role = resolve_role(conn, ctx.principal_id, project_id)
    return PermissionSnapshotResponse(**permission_snapshot(role))


# ---------------------------------------------------------
# Members
# ---------------------------------------------------------
@router.get(
    "/{project_id}/members",
    response_model=List[MemberResponse],
    dependencies=[Depends(require_project_permission(ProjectAction.VIEW))],
)
def list_members(project_id: str, ctx: AuthContext = Depends(require_auth_context)):
    return [MemberResponse.from_membership(m) for m in memberships.list_members(project_id, ctx.principal_id)]


@router.post("/{project_id}/members", response_model=MemberResponse, status_code=201)
def add_member(project_id: str, request: MemberAddRequest, ctx: AuthContext = Depends(require_auth_context)):
    membership = memberships.add_member(project_id, request.user_id, request.role, ctx.principal_id)
    return MemberResponse.from_membership(membership)


@router.patch("/{project_id}/members/{user_id}", response_model=MemberResponse)
def change_member_role(
    project_id: str,
    user_id: str,
    request: MemberRoleUpdateRequest,
    ctx: AuthContext = Depends(require_auth_context),
):
    membership = memberships.change_role(project_id, user_id, request.role, ctx.principal_id)
    return MemberResponse.from_membership(membership)


@router.delete("/{project_id}/members/{user_id}", status_code=204)
def remove_member(project_id: str, user_id: str, ctx: AuthContext = Depends(require_auth_context)):
    """Remove a member, or leave the project when user_id is the caller."""
    memberships.remove_member(project_id, user_id, ctx.principal_id)
    return Response(status_code=204)


# ---------------------------------------------------------
# Project tasks
# ---------------------------------------------------------
@router.get(
    "/{project_id}/tasks",
    response_model=List[TaskResponse],
    dependencies=[Depends(require_project_permission(ProjectAction.VIEW))],
)
def list_project_tasks(project_id: str, ctx: AuthContext = Depends(require_auth_context)):
    return [TaskResponse.from_task(t) for t in tasks.list_tasks(project_id, ctx.principal_id)]


@router.post("/{project_id}/tasks", response_model=TaskResponse, status_code=201)
def create_project_task(project_id: str, request: TaskCreateRequest, ctx: AuthContext = Depends(require_auth_context)):
    task = tasks.create_task(
        ctx.principal_id,
        request.title,
        project_id=project_id,
        assignee_id=request.assignee_id,
        description=request.description,
        status=request.status,
    )
    return TaskResponse.from_task(task)


# ---------------------------------------------------------
# Tasks by id, and personal tasks
# ---------------------------------------------------------
@task_router.get("/personal", response_model=List[TaskResponse])
def list_personal_tasks(ctx: AuthContext = Depends(require_auth_context)):
    return [TaskResponse.from_task(t) for t in tasks.list_personal_tasks(ctx.principal_id)]


@task_router.post("/personal", response_model=TaskResponse, status_code=201)
def create_personal_task(request: TaskCreateRequest, ctx: AuthContext = Depends(require_auth_context)):
    task = tasks.create_task(
        ctx.principal_id,
        request.title,
        assignee_id=request.assignee_id,
        description=request.description,
        status=request.status,
    )
    return TaskResponse.from_task(task)


@task_router.get("/{task_id}", response_model=TaskResponse)
def get_task(task_id: str, ctx: AuthContext = Depends(require_auth_context)):
    return TaskResponse.from_task(tasks.get_task(task_id, ctx.principal_id))


@task_router.patch("/{task_id}", response_model=TaskResponse)
def update_task(task_id: str, request: TaskUpdateRequest, ctx: AuthContext = Depends(require_auth_context)):
    assignee = request.assignee_id if "assignee_id" in request.model_fields_set else tasks.UNSET
    task = tasks.update_task(
        task_id,
        ctx.principal_id,
        title=request.title,
        description=request.description,
        status=request.status,
        assignee_id=assignee,
    )
    return TaskResponse.from_task(task)


@task_router.delete("/{task_id}", status_code=204)
def delete_task(task_id: str, ctx: AuthContext = Depends(require_auth_context)):
    tasks.delete_task(task_id, ctx.principal_id)
    return Response(status_code=204)
