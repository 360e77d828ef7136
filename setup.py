from setuptools import find_packages, setup

package_name = "lidar_deskew"

setup(
    name=package_name,
    version="0.1.0",
    packages=find_packages(exclude=["test"]),
    data_files=[
        (
            "share/" + package_name + "/config",
            [
                "config/lidar_deskew.yaml",
            ],
        ),
    ],
    install_requires=["setuptools", "numpy", "scipy", "jax", "pyyaml", "pydantic>=2", "rerun-sdk"],
    extras_require={"test": ["pytest"]},
    zip_safe=True,
    maintainer="Will Haber",
    maintainer_email="whab13@mit.edu",
    description="LiDAR motion compensation from IMU and pose streams",
    license="Apache-2.0",
    tests_require=["pytest"],
)
