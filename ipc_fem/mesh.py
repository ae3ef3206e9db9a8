"""2D 三角形メッシュと接触境界.

ソルバーが必要とする最小限のメッシュ表現:
  - 参照節点座標, 三角形要素（反時計回り）, 接触境界エッジ, ボディ番号
  - 配置ベクトル x（変位, 節点ごとに (ux, uy) のインタリーブ）から変形後座標を得る

円板（下端エッジ水平の正多角形扇形分割）・矩形・メッシュ結合のビルダーを持つ。
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class Mesh2D:
    """2D 三角形メッシュ.

    Attributes:
        rest_positions: (n_vertices, 2) 参照座標
        elements: (n_elements, 3) 要素節点（反時計回り）
        edges: (n_edges, 2) 接触境界エッジ
        body_ids: (n_vertices,) 節点のボディ番号
        element_type: 要素形状タグ（要素評価器レジストリのキー）
    """

    rest_positions: np.ndarray
    elements: np.ndarray
    edges: np.ndarray
    body_ids: np.ndarray | None = None
    element_type: str = "tri3"

    def __post_init__(self) -> None:
        self.rest_positions = np.asarray(self.rest_positions, dtype=float)
        self.elements = np.asarray(self.elements, dtype=np.intp).reshape(-1, 3)
        self.edges = np.asarray(self.edges, dtype=np.intp).reshape(-1, 2)
        if self.rest_positions.ndim != 2 or self.rest_positions.shape[1] != 2:
            raise ValueError(f"rest_positions は (n, 2): {self.rest_positions.shape}")
        if self.body_ids is None:
            self.body_ids = np.zeros(self.n_vertices, dtype=np.intp)
        else:
            self.body_ids = np.asarray(self.body_ids, dtype=np.intp)
        if len(self.body_ids) != self.n_vertices:
            raise ValueError("body_ids の長さが節点数と一致しない")
        n = self.n_vertices
        for name, arr in (("elements", self.elements), ("edges", self.edges)):
            if arr.size and (arr.min() < 0 or arr.max() >= n):
                raise ValueError(f"{name} に範囲外の節点番号")

    @property
    def dim(self) -> int:
        return 2

    @property
    def n_vertices(self) -> int:
        return self.rest_positions.shape[0]

    @property
    def ndof(self) -> int:
        return self.dim * self.n_vertices

    @property
    def collision_vertices(self) -> np.ndarray:
        """接触境界エッジに属する節点."""
        return np.unique(self.edges)

    @property
    def n_bodies(self) -> int:
        return int(self.body_ids.max()) + 1 if self.n_vertices else 0

    def vertices(self, x: np.ndarray) -> np.ndarray:
        """変位 x から変形後座標 (n_vertices, 2) を返す."""
        return self.rest_positions + np.asarray(x, dtype=float).reshape(-1, self.dim)

    def body_dofs(self, body_id: int) -> np.ndarray:
        """ボディに属する全自由度."""
        nodes = np.flatnonzero(self.body_ids == body_id)
        return (self.dim * nodes[:, None] + np.arange(self.dim)).ravel()

    def bbox_diagonal(self) -> float:
        """参照配置のバウンディングボックス対角長."""
        if self.n_vertices == 0:
            return 0.0
        return float(np.linalg.norm(self.rest_positions.max(axis=0) - self.rest_positions.min(axis=0)))

    def element_areas(self, x: np.ndarray | None = None) -> np.ndarray:
        """符号付き要素面積（反転要素は負）."""
        V = self.rest_positions if x is None else self.vertices(x)
        p0 = V[self.elements[:, 0]]
        p1 = V[self.elements[:, 1]]
        p2 = V[self.elements[:, 2]]
        e1 = p1 - p0
        e2 = p2 - p0
        return 0.5 * (e1[:, 0] * e2[:, 1] - e1[:, 1] * e2[:, 0])


# ====================================================================
# ビルダー
# ====================================================================


def disk_mesh(
    center: tuple[float, float],
    radius: float,
    n_segments: int = 16,
    *,
    flat_bottom: bool = True,
) -> Mesh2D:
    """円板を中心節点 + 正多角形の扇形分割でメッシュ化する.

    flat_bottom=True では最下部のエッジが水平になるよう回転させる。

    Args:
        center: 中心座標
        radius: 外接円半径
        n_segments: 周方向分割数（>= 3）
        flat_bottom: 下端エッジを水平にする

    Returns:
        Mesh2D（節点 0 が中心, 境界エッジは外周）
    """
    if n_segments < 3:
        raise ValueError(f"n_segments は3以上: {n_segments}")
    if radius <= 0:
        raise ValueError(f"radius は正値: {radius}")
    offset = -0.5 * np.pi + np.pi / n_segments if flat_bottom else 0.0
    theta = offset + 2.0 * np.pi * np.arange(n_segments) / n_segments
    ring = np.column_stack([np.cos(theta), np.sin(theta)]) * radius + np.asarray(center, dtype=float)
    positions = np.vstack([np.asarray(center, dtype=float)[None, :], ring])

    k = np.arange(n_segments)
    ring_ids = 1 + k
    next_ids = 1 + (k + 1) % n_segments
    elements = np.column_stack([np.zeros(n_segments, dtype=np.intp), ring_ids, next_ids])
    edges = np.column_stack([ring_ids, next_ids])
    return Mesh2D(positions, elements, edges)


def rectangle_mesh(lower: tuple[float, float], upper: tuple[float, float]) -> Mesh2D:
    """軸平行な矩形を 2 要素で分割する（境界 4 エッジ）."""
    x0, y0 = lower
    x1, y1 = upper
    if x1 <= x0 or y1 <= y0:
        raise ValueError(f"upper は lower より大きい必要がある: {lower}, {upper}")
    positions = np.array([[x0, y0], [x1, y0], [x1, y1], [x0, y1]], dtype=float)
    elements = np.array([[0, 1, 2], [0, 2, 3]])
    edges = np.array([[0, 1], [1, 2], [2, 3], [3, 0]])
    return Mesh2D(positions, elements, edges)


def merge_meshes(*meshes: Mesh2D) -> Mesh2D:
    """メッシュを結合する（各入力が 1 ボディ, 番号は入力順）."""
    if not meshes:
        raise ValueError("結合するメッシュがない")
    types = {m.element_type for m in meshes}
    if len(types) != 1:
        raise ValueError(f"要素形状が混在している: {sorted(types)}")
    positions = []
    elements = []
    edges = []
    body_ids = []
    offset = 0
    body_offset = 0
    for m in meshes:
        positions.append(m.rest_positions)
        elements.append(m.elements + offset)
        edges.append(m.edges + offset)
        body_ids.append(m.body_ids + body_offset)
        offset += m.n_vertices
        body_offset += m.n_bodies
    return Mesh2D(
        np.vstack(positions),
        np.vstack(elements),
        np.vstack(edges),
        np.concatenate(body_ids),
        element_type=types.pop(),
    )
