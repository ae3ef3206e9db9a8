"""2D 点–エッジ接触モジュール.

モジュール構成:
- geometry: 点–エッジ最近接点・距離・ヤコビアン, 線分交差
- broadphase: AABB 空間ハッシュによる候補ペア探索
- ccd: 連続衝突判定, 最小距離, 静的交差判定
- barrier: 対数バリア関数とバリア剛性の初期化・更新
"""

from ipc_fem.contact.barrier import (
    barrier,
    barrier_first_derivative,
    barrier_second_derivative,
    initial_barrier_stiffness,
    update_barrier_stiffness,
)
from ipc_fem.contact.broadphase import (
    broadphase_aabb,
    compute_edge_aabb,
    compute_vertex_aabb,
    point_edge_candidates,
)
from ipc_fem.contact.ccd import (
    compute_collision_free_step,
    compute_min_distance,
    has_intersections,
    is_step_collision_free,
    max_step_size,
    point_edge_ccd,
)
from ipc_fem.contact.geometry import (
    PointEdgeResult,
    pair_dofs,
    point_edge_closest,
    point_edge_distance,
    point_edge_jacobian,
    segments_intersect,
)

__all__ = [
    "barrier",
    "barrier_first_derivative",
    "barrier_second_derivative",
    "initial_barrier_stiffness",
    "update_barrier_stiffness",
    "broadphase_aabb",
    "compute_edge_aabb",
    "compute_vertex_aabb",
    "point_edge_candidates",
    "compute_collision_free_step",
    "compute_min_distance",
    "has_intersections",
    "is_step_collision_free",
    "max_step_size",
    "point_edge_ccd",
    "PointEdgeResult",
    "pair_dofs",
    "point_edge_closest",
    "point_edge_distance",
    "point_edge_jacobian",
    "segments_intersect",
]
