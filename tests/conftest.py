"""Shared pytest fixtures for the test suite."""

import pandas as pd
import pytest


TRIAL_CSV = """lab,subject,trial_num,trial_error
LANCSLAB,lancs_01,1,noerror
LANCSLAB,lancs_01,2,noerror
LANCSLAB,lancs_01,2,error
BoundUW,007,1,
BoundUW,007,2,
InfantCogUBC,S12,1,
InfantCogUBC,S99,1,
mylab,MB_0101,1,
mylab,MB_0102,1,
"""

PARTICIPANT_CSV = """lab,subject,age,notes,session_error
lancslab,01,300,,noerror
bounduw,7,280,fussy,noerror
infantcogubc,12,310,,noerror
MyLab,mb-0101,295,,noerror
mylab,mb0103,305,,error
"""

LEDGER_CSV = """subject,lab,Confirmed
99,InfantCogUBC,X
mb0102,mylab,
"""


@pytest.fixture
def trial_records():
    """Raw trial rows as the column remapper hands them over."""
    return pd.DataFrame({
        'lab': ['LANCSLAB', 'LANCSLAB', 'LANCSLAB', 'BoundUW', 'mylab'],
        'subject': ['lancs_01', 'lancs_01', 'lancs_01', '007', 'MB_0102'],
        'trial_num': ['1', '2', '2', '1', '1'],
        'trial_error': ['noerror', 'noerror', 'error', None, None],
        'origin_file': ['lancs.csv'] * 3 + ['uw.csv', 'mylab.csv'],
    })


@pytest.fixture
def participant_records():
    return pd.DataFrame({
        'lab': ['lancslab', 'bounduw', 'mylab'],
        'subject': ['01', '7', 'mb0103'],
        'age': ['300', '280', '305'],
        'notes': [None, 'fussy', None],
        'session_error': ['noerror', 'noerror', 'error'],
        'origin_file': ['participants.csv'] * 3,
    })


@pytest.fixture
def input_files(tmp_path):
    """Trial, participant and ledger CSVs written to a temporary directory."""
    paths = {
        'trials': tmp_path / 'trials.csv',
        'participants': tmp_path / 'participants.csv',
        'ledger': tmp_path / 'ledger.csv',
    }
    paths['trials'].write_text(TRIAL_CSV, encoding='utf-8')
    paths['participants'].write_text(PARTICIPANT_CSV, encoding='utf-8')
    paths['ledger'].write_text(LEDGER_CSV, encoding='utf-8')
    return paths
