from setuptools import find_packages, setup

setup(
    name="lambda-deploy",
    version="0.1.0",
    packages=find_packages(include=["lambda_deploy", "lambda_deploy.*"]),
    install_requires=[
        "boto3>=1.26.0",
        "botocore",
        "pulumi>=3.0.0,<4.0.0",
        "pulumi-aws>=6.0.0",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "tenacity>=8.0",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "pytest-mock",
            "pytest-cov",
            "moto[s3]>=5.0",
        ]
    },
    python_requires=">=3.10",
    description="Bundle, publish and deploy code to AWS Lambda alongside Pulumi",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)
