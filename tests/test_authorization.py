# tests/test_authorization.py: Authorization resolver unit tests
import logging

import pytest

from models.models import ProjectRole
from services.authorization import AuthorizationResolver
from tests.fakes import BrokenAccessStore, InMemoryAccessStore, project_predicates

# Minimum role each project-level predicate requires
REQUIRED_ROLE = {
    "is_project_member": ProjectRole.MEMBER,
    "can_view_project_files": ProjectRole.MEMBER,
    "can_create_tasks": ProjectRole.EDITOR,
    "can_manage_project": ProjectRole.ADMIN,
    "can_invite_project_members": ProjectRole.ADMIN,
}


@pytest.fixture
def store():
    return InMemoryAccessStore()


@pytest.fixture
def resolver(store):
    return AuthorizationResolver(store)


@pytest.fixture
def world(store):
    """A project with one user per role plus an outsider"""
    owner = store.add_user("Owner")
    admin = store.add_user("Admin")
    editor = store.add_user("Editor")
    member = store.add_user("Member")
    outsider = store.add_user("Outsider")
    project = store.add_project(owner)
    store.add_member(project, admin, ProjectRole.ADMIN)
    store.add_member(project, editor, ProjectRole.EDITOR)
    store.add_member(project, member, ProjectRole.MEMBER)
    return {
        "store": store,
        "project": project,
        "owner": owner,
        "admin": admin,
        "editor": editor,
        "member": member,
        "outsider": outsider,
    }


# ── Project predicates ───────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("predicate", project_predicates())
async def test_creator_passes_without_membership_row(store, resolver, predicate):
    """The creator holds ADMIN authority even with no ProjectMember row"""
    owner = store.add_user("Owner")
    project = store.add_project(owner, with_admin_row=False)
    assert await getattr(resolver, predicate)(project.id, owner.id) is True


@pytest.mark.asyncio
@pytest.mark.parametrize("predicate", project_predicates())
@pytest.mark.parametrize("role", [ProjectRole.MEMBER, ProjectRole.EDITOR, ProjectRole.ADMIN])
async def test_role_grants_match_minimum_role(world, resolver, predicate, role):
    user = {ProjectRole.ADMIN: world["admin"], ProjectRole.EDITOR: world["editor"], ProjectRole.MEMBER: world["member"]}[role]
    expected = role.at_least(REQUIRED_ROLE[predicate])
    assert await getattr(resolver, predicate)(world["project"].id, user.id) is expected


@pytest.mark.asyncio
@pytest.mark.parametrize("predicate", project_predicates())
async def test_outsider_is_denied_everything(world, resolver, predicate):
    assert await getattr(resolver, predicate)(world["project"].id, world["outsider"].id) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("predicate", project_predicates())
async def test_higher_role_keeps_every_grant_of_lower_role(world, resolver, predicate):
    project_id = world["project"].id
    member = await getattr(resolver, predicate)(project_id, world["member"].id)
    editor = await getattr(resolver, predicate)(project_id, world["editor"].id)
    admin = await getattr(resolver, predicate)(project_id, world["admin"].id)
    assert (not member or editor) and (not editor or admin)


@pytest.mark.asyncio
async def test_invite_is_alias_of_manage(world, resolver):
    for key in ("owner", "admin", "editor", "member", "outsider"):
        user_id = world[key].id
        assert await resolver.can_invite_project_members(world["project"].id, user_id) == \
            await resolver.can_manage_project(world["project"].id, user_id)


# ── Tasks ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_task_creator_can_manage_own_task_as_plain_member(world, resolver):
    store = world["store"]
    task = store.add_task(world["project"], world["member"])
    assert await resolver.can_manage_task(task.id, world["member"].id) is True


@pytest.mark.asyncio
async def test_editor_can_manage_any_task_in_project(world, resolver):
    store = world["store"]
    task = store.add_task(world["project"], world["owner"])
    assert await resolver.can_manage_task(task.id, world["editor"].id) is True
    assert await resolver.can_manage_task(task.id, world["admin"].id) is True
    assert await resolver.can_manage_task(task.id, world["owner"].id) is True


@pytest.mark.asyncio
async def test_member_cannot_manage_someone_elses_task(world, resolver):
    store = world["store"]
    task = store.add_task(world["project"], world["editor"], assignee=world["member"])
    assert await resolver.can_manage_task(task.id, world["member"].id) is False
    assert await resolver.can_manage_task(task.id, world["outsider"].id) is False


@pytest.mark.asyncio
async def test_assignee_can_update_status_but_not_manage(world, resolver):
    store = world["store"]
    task = store.add_task(world["project"], world["editor"], assignee=world["member"])
    assert await resolver.can_update_task_status(task.id, world["member"].id) is True
    assert await resolver.can_manage_task(task.id, world["member"].id) is False


@pytest.mark.asyncio
async def test_unassigned_member_cannot_update_status(world, resolver):
    store = world["store"]
    other = store.add_user("Other")
    store.add_member(world["project"], other, ProjectRole.MEMBER)
    task = store.add_task(world["project"], world["editor"], assignee=world["member"])
    assert await resolver.can_update_task_status(task.id, other.id) is False
    assert await resolver.can_update_task_status(task.id, world["editor"].id) is True


@pytest.mark.asyncio
async def test_view_task_requires_membership(world, resolver):
    store = world["store"]
    task = store.add_task(world["project"], world["owner"])
    assert await resolver.can_view_task(task.id, world["member"].id) is True
    assert await resolver.can_view_task(task.id, world["outsider"].id) is False
    assert await resolver.can_view_task_files(task.id, world["member"].id) is True
    assert await resolver.can_view_task_files(task.id, world["outsider"].id) is False


# ── Files ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_uploader_and_editors_manage_files(world, resolver):
    store = world["store"]
    file = store.add_file(world["project"], world["member"])
    other = store.add_user("Other")
    store.add_member(world["project"], other, ProjectRole.MEMBER)

    assert await resolver.can_manage_file(file.id, world["member"].id) is True
    assert await resolver.can_manage_file(file.id, world["editor"].id) is True
    assert await resolver.can_manage_file(file.id, world["owner"].id) is True
    assert await resolver.can_manage_file(file.id, other.id) is False
    assert await resolver.can_manage_file(file.id, world["outsider"].id) is False


# ── Fail closed ──────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("predicate", [
    "is_project_member", "can_manage_project", "can_invite_project_members", "can_create_tasks",
    "can_manage_task", "can_update_task_status", "can_view_task", "can_manage_file",
    "can_view_project_files", "can_view_task_files",
])
@pytest.mark.parametrize("entity_id", ["does-not-exist", "", None])
async def test_missing_entity_is_denied(world, resolver, predicate, entity_id):
    assert await getattr(resolver, predicate)(entity_id, world["owner"].id) is False


@pytest.mark.asyncio
@pytest.mark.parametrize("predicate", [
    "is_project_member", "can_manage_project", "can_create_tasks",
    "can_manage_task", "can_update_task_status", "can_view_task",
    "can_manage_file", "can_view_task_files",
])
async def test_store_failure_is_denied_and_logged(caplog, predicate):
    store = BrokenAccessStore()
    resolver = AuthorizationResolver(store)
    with caplog.at_level(logging.ERROR, logger="services.authorization"):
        assert await getattr(resolver, predicate)("some-id", "some-user") is False
    assert "denying" in caplog.text


# ── Freshness ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_role_changes_apply_to_the_next_check(world, resolver):
    store = world["store"]
    project, member = world["project"], world["member"]

    assert await resolver.can_create_tasks(project.id, member.id) is False
    store.add_member(project, member, ProjectRole.EDITOR)
    assert await resolver.can_create_tasks(project.id, member.id) is True

    store.remove_member(project, member)
    assert await resolver.is_project_member(project.id, member.id) is False
    assert await resolver.can_create_tasks(project.id, member.id) is False
