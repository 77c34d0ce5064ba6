"""URDF parser for loading robot descriptions into a KinematicTree.

Every URDF link becomes one body. The joint leading into a link becomes that
body's input transform and joint; the body gets one (identity) output per
child joint of the link, or a single output for leaf links. The root link
becomes a fixed body attached to the base frame. Bodies are appended in
depth-first order so that frame and joint-vector ordering follow the tree.
"""

import logging
from typing import Dict, List

import numpy as np
from lxml import etree

from ..core import JointType, KinematicBody, KinematicTree
from ..errors import StructureError
from ..transforms import se3, so3

logger = logging.getLogger(__name__)

_JOINT_TYPES = {
    "revolute": JointType.REVOLUTE,
    "continuous": JointType.REVOLUTE,
    "prismatic": JointType.PRISMATIC,
    "fixed": JointType.FIXED,
}


def load_urdf(urdf_path: str) -> KinematicTree:
    """Load a URDF file and convert it to a KinematicTree.

    Args:
        urdf_path: Path to the URDF file to load.

    Returns:
        KinematicTree with one body per link, named after the link.
    """
    tree = etree.parse(urdf_path)
    root = tree.getroot()

    # First pass: build topology mappings
    links = {link.get('name'): link for link in root.findall('link')}
    children: Dict[str, List[etree._Element]] = {name: [] for name in links}
    joint_into: Dict[str, etree._Element] = {}

    for joint in root.findall('joint'):
        parent_name = joint.find('parent').get('link')
        child_name = joint.find('child').get('link')
        if parent_name not in links or child_name not in links:
            raise ValueError(f"Joint '{joint.get('name')}' references an unknown link")
        if child_name in joint_into:
            raise ValueError(f"Link '{child_name}' has more than one parent joint")
        children[parent_name].append(joint)
        joint_into[child_name] = joint

    # Find root link (not a child of any joint)
    root_links = [name for name in links if name not in joint_into]
    if len(root_links) != 1:
        raise ValueError(f"Expected exactly one root link, found: {root_links}")

    kinematic_tree = KinematicTree()
    try:
        _append_links(kinematic_tree, root_links[0], links, children, joint_into)
    except Exception:
        # Release bodies already handed to the partial tree
        kinematic_tree.close()
        raise

    logger.debug("Loaded %s: %d bodies, %d DoF", urdf_path, len(kinematic_tree.body_names),
                 kinematic_tree.get_dof_count())
    return kinematic_tree


def _append_links(kinematic_tree: KinematicTree, root_link: str, links, children, joint_into) -> None:
    """Append every link below `root_link` as a body, depth-first.

    Stack entries are (link name, parent body index, parent output index).
    """
    stack = [(root_link, None, None)]
    while stack:
        link_name, parent, output = stack.pop()
        child_joints = children[link_name]
        body = _link_body(links[link_name], joint_into.get(link_name), max(len(child_joints), 1))

        if not kinematic_tree.add_body(body, parent=parent, output=output):
            raise StructureError(f"Could not attach link '{link_name}'")

        index = len(kinematic_tree.body_names) - 1
        for k in reversed(range(len(child_joints))):
            stack.append((child_joints[k].find('child').get('link'), index, k))


def _link_body(link, joint, output_count: int) -> KinematicBody:
    """Build the body for a link from its parent joint (None for the root)."""
    outputs = [np.eye(4)] * output_count
    com = _parse_xyz(link.find('inertial/origin'), 'xyz', '0 0 0')

    if joint is None:
        return KinematicBody.create_joint_body(JointType.FIXED, outputs, com=com, name=link.get('name'))

    joint_type = joint.get('type')
    if joint_type not in _JOINT_TYPES:
        raise ValueError(f"Unsupported joint type '{joint_type}' for joint '{joint.get('name')}'")

    origin = joint.find('origin')
    xyz = _parse_xyz(origin, 'xyz', '0 0 0')
    rpy = _parse_xyz(origin, 'rpy', '0 0 0')
    input_transform = np.asarray(se3.from_position_and_rotation(xyz, so3.from_rpy(rpy)))

    axis = None
    if _JOINT_TYPES[joint_type] != JointType.FIXED:
        axis = _parse_xyz(joint.find('axis'), 'xyz', '1 0 0')  # URDF default axis

    return KinematicBody.create_joint_body(
        _JOINT_TYPES[joint_type],
        outputs,
        com=com,
        axis=axis,
        input=input_transform,
        name=link.get('name'),
    )


def _parse_xyz(element, attribute: str, default: str) -> np.ndarray:
    text = default if element is None else element.get(attribute, default)
    return np.array([float(x) for x in text.split()])
