from setuptools import setup, find_packages

setup(
    name='tbsim',
    version='1.0',
    packages=find_packages(exclude=['tests', 'tests.*']),
    package_data={'tbsim': ['params/*.yml', 'params/scenarios/*.yml']},
    include_package_data=True,
    url='',
    license='',
    author='',
    author_email='',
    python_requires='>=3.8',
    install_requires=['numpy>=1.21',
                      'scipy>=1.7',
                      'pandas>=1.3',
                      'pydantic>=2.0',
                      'PyYAML>=5.4',
                      'click>=8.0', ],
    extras_require={'test': ['pytest>=7.0', ]},
    entry_points={'console_scripts': ['tbsim=tbsim.cli:cli']},
    description='Compartmental tuberculosis transmission and vaccination impact simulator'
)
